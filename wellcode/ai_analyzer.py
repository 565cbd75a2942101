"""
Code analysis, action items and comment sentiment.

OpenAI reviews code and writes action items; HuggingFace inference scores
sentiment and toxicity. Every call degrades to a neutral result when the
service is not configured or fails, so analysis never blocks the pipeline.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from openai import OpenAI

from .config import Settings, get_settings
from .metrics import feedback_score, is_code_file
from .models import AccountType

logger = logging.getLogger(__name__)

# 512 tokens is roughly 2048 characters
MAX_ANALYSIS_LENGTH = 2048
MAX_PATCH_LENGTH = 800
TOXICITY_THRESHOLD = 0.7

POSITIVE_WORDS = {
    "good", "great", "awesome", "excellent", "amazing", "love", "nice", "best",
    "better", "fantastic", "perfect", "wonderful", "happy", "glad", "positive",
    "thanks", "thank", "appreciate", "helpful", "impressive", "well", "like",
}
NEGATIVE_WORDS = {
    "bad", "terrible", "awful", "horrible", "hate", "dislike", "worst",
    "poor", "annoying", "disappointing", "negative", "useless", "sorry",
    "problem", "issue", "fail", "failed", "failing", "sucks", "wrong",
}
OFFENSIVE_WORDS = {"idiot", "stupid", "moron", "dumb", "crap", "shut up", "garbage", "pathetic", "wtf"}

DEFAULT_ACTION_ITEMS = {
    "overallRecommendation": (
        "Consider optimizing your PR size and maintaining regular breaks "
        "to improve both efficiency and wellness."
    ),
    "actionItems": [
        {
            "title": "Optimize PR Size",
            "description": "Try to keep PRs under 300 lines of code for more effective reviews and quicker iteration.",
            "category": "efficiency",
            "potentialImpact": 8,
        },
        {
            "title": "Maintain Regular Breaks",
            "description": "Consider short, regular breaks to maintain focus and prevent burnout.",
            "category": "wellness",
            "potentialImpact": 7,
        },
        {
            "title": "Increase Test Coverage",
            "description": "Add tests for core functionality to improve code quality and reduce future bugs.",
            "category": "quality",
            "potentialImpact": 6,
        },
    ],
}

ANALYSIS_SYSTEM_PROMPT = (
    "You are a code review assistant that provides constructive feedback on code patterns and quality. "
    'Return your analysis as a JSON object of the form {"feedback": [...]}.'
)

ACTION_ITEMS_SYSTEM_PROMPT = """You are an expert software development coach that analyzes a developer's metrics \
and provides specific, actionable advice to help them improve. Provide 3-5 personalized action items based on \
the metrics and the current PR. Each action item must be tied to a specific metric, relate to the current PR \
whenever possible, and be categorized as efficiency, wellness, quality or work_type.

Respond in JSON with the following structure:
{
  "overallRecommendation": "A sentence summarizing the key areas to focus on",
  "actionItems": [
    {"title": "...", "description": "...", "category": "efficiency|wellness|quality|work_type", "potentialImpact": 1-10}
  ]
}"""


def chunk_text(text: str, max_length: int = MAX_ANALYSIS_LENGTH) -> List[str]:
    """Split text at newlines or spaces into pieces of at most `max_length`"""
    if not text or len(text) <= max_length:
        return [text]

    chunks = []
    remaining = text
    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break
        cut = remaining.rfind("\n", 0, max_length)
        if cut < max_length // 2:
            cut = remaining.rfind(" ", 0, max_length)
        if cut < max_length // 2:
            cut = max_length
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].strip()
        if len(chunks) > 100:
            logger.warning("Too many chunks when splitting text, truncating")
            break
    return chunks


def fallback_sentiment(text: str) -> float:
    """Share of positive words among sentiment words; 0.5 when there are none"""
    words = re.findall(r"[a-z']+", (text or "").lower())
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    if positive + negative == 0:
        return 0.5
    return positive / (positive + negative)


def fallback_is_offensive(text: str) -> bool:
    lowered = (text or "").lower()
    return any(re.search(rf"\b{re.escape(word)}\b", lowered) for word in OFFENSIVE_WORDS)


def build_analysis_prompt(files: List[Dict[str, Any]], account_type: AccountType) -> str:
    if account_type == AccountType.PERSONAL:
        sampled = files[:3]
        focus = "1. Code structure and organization\n2. Potential bugs or issues\n3. Simple improvements\n4. Best practices"
        intro = "Please analyze the following code for quality and provide constructive feedback."
    else:
        sampled = files[:5]
        focus = (
            "1. Code structure and organization\n2. Architectural patterns\n3. Potential bugs or issues\n"
            "4. Team collaboration signs\n5. Documentation quality\n6. Testing approach\n7. Best practices"
        )
        intro = "Please analyze the following code for quality, patterns and team collaboration indicators."

    prompt = f"{intro} Focus on:\n{focus}\n\nFiles:\n\n"
    for f in sampled:
        patch = f.get("patch") or "No patch available"
        if len(patch) > MAX_PATCH_LENGTH:
            patch = patch[:MAX_PATCH_LENGTH] + f"\n... (truncated, {len(patch) - MAX_PATCH_LENGTH} more characters)"
        prompt += f"Filename: {f.get('filename')}\n"
        prompt += f"Changes: Added {f.get('additions', 0)} lines, removed {f.get('deletions', 0)} lines\n"
        prompt += f"Patch:\n{patch}\n\n"

    prompt += """Provide your feedback as:
{"feedback": [
  {
    "type": "suggestion" | "highlight" | "warning",
    "message": "Your feedback message",
    "codeContext": "The code snippet this applies to",
    "fileLocation": "filename:line_number"
  }
]}"""
    return prompt


def _feedback_list(data: Any) -> Optional[List[Dict[str, Any]]]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict) and isinstance(data.get("feedback"), list):
        return [item for item in data["feedback"] if isinstance(item, dict)]
    return None


def parse_ai_response(response: str) -> Dict[str, Any]:
    """
    Turn a model answer into ``{"feedback": [...], "score": n}``.

    Accepts plain JSON, a JSON array embedded in prose, or a fenced code
    block. Anything else becomes a single suggestion scoring 70.
    """
    candidates = [response]
    embedded = re.search(r"\[\s*{[\s\S]*}\s*\]", response or "")
    if embedded:
        candidates.append(embedded.group(0))
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", response or "")
    if fenced:
        candidates.append(fenced.group(1))

    for candidate in candidates:
        try:
            feedback = _feedback_list(json.loads(candidate))
        except (TypeError, ValueError):
            continue
        if feedback is not None:
            return {"feedback": feedback, "score": feedback_score(feedback)}

    if not response:
        return {
            "feedback": [{"type": "suggestion", "message": "AI generated feedback could not be parsed correctly."}],
            "score": 50,
        }
    return {"feedback": [{"type": "suggestion", "message": response[:500]}], "score": 70}


class AIAnalyzer:
    """Sentiment and LLM capability"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        openai_client: Optional[OpenAI] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._openai = openai_client
        if self._openai is None and self.settings.openai_api_key:
            self._openai = OpenAI(api_key=self.settings.openai_api_key, base_url=self.settings.openai_base_url)

    def _chat(self, messages: List[Dict[str, str]], temperature: float, max_tokens: int) -> str:
        request_params = {
            "model": self.settings.openai_model_id,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }
        # Disable thinking mode for Z.AI/GLM to get response in content field
        if "z.ai" in self.settings.openai_base_url.lower():
            request_params["extra_body"] = {"chat_template_kwargs": {"enable_thinking": False}}

        resp = self._openai.chat.completions.create(**request_params)
        if not resp.choices:
            return ""
        return (resp.choices[0].message.content or "").strip()

    async def analyze_code(self, files: List[Dict[str, Any]], account_type: AccountType) -> Dict[str, Any]:
        """
        Review the changed code files of a PR.

        Returns:
            ``{"feedback": [...], "score": 0-100}``; PRs touching no code files
            score 100 without calling the model. A failed model call returns no
            feedback and a ``None`` score.
        """
        code_files = [f for f in files if is_code_file(f.get("filename", ""))]
        if not code_files:
            logger.info("No code files to analyze, skipping OpenAI call")
            return {"feedback": [], "score": 100}
        if self._openai is None:
            logger.info("OpenAI is not configured, skipping code analysis")
            return {"feedback": [], "score": 100}

        prompt = build_analysis_prompt(code_files, account_type)
        logger.info(f"Analyzing {len(code_files)} code files with {self.settings.openai_model_id}")
        try:
            content = await asyncio.to_thread(
                self._chat,
                [
                    {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                0.3,
                1000,
            )
        except Exception as e:
            # No score: the codePatterns metric is left out instead of scoring 0
            logger.error(f"Code analysis failed, continuing without a code score: {e}")
            return {"feedback": [], "score": None}

        analysis = parse_ai_response(content)
        logger.info(f"Code analysis returned {len(analysis['feedback'])} feedback items, score {analysis['score']}")
        return analysis

    async def generate_action_items(
        self, pr: Dict[str, Any], metrics: Dict[str, Any], user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Personalized action items for the PR author; defaults when the model is unavailable"""
        if self._openai is None:
            return DEFAULT_ACTION_ITEMS

        context = {"userId": user_id, "currentPR": pr, "currentMetrics": metrics}
        user_message = (
            "Please analyze this developer's metrics and provide personalized action items for improvement:\n"
            + json.dumps(context, indent=2, default=str)
        )
        try:
            content = await asyncio.to_thread(
                self._chat,
                [
                    {"role": "system", "content": ACTION_ITEMS_SYSTEM_PROMPT},
                    {"role": "user", "content": user_message},
                ],
                0.5,
                1500,
            )
            fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", content)
            if fenced:
                content = fenced.group(1)
            obj = re.search(r"{[\s\S]*}", content)
            result = json.loads(obj.group(0) if obj else content)
        except Exception as e:
            logger.error(f"Error generating action items: {e}")
            return DEFAULT_ACTION_ITEMS

        if not result.get("overallRecommendation") or not isinstance(result.get("actionItems"), list):
            logger.error("Invalid action items response format from OpenAI")
            return DEFAULT_ACTION_ITEMS
        return {"overallRecommendation": result["overallRecommendation"], "actionItems": result["actionItems"]}

    async def _inference(self, model: str, text: str) -> Any:
        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            response = await client.post(
                f"{self.settings.huggingface_base_url}{model}",
                headers={
                    "Authorization": f"Bearer {self.settings.huggingface_api_key}",
                    "Content-Type": "application/json",
                },
                json={"inputs": text},
            )
            response.raise_for_status()
            return response.json()

    @staticmethod
    def _label_scores(data: Any) -> Dict[str, float]:
        if isinstance(data, list) and data and isinstance(data[0], list):
            data = data[0]
        if not isinstance(data, list):
            return {}
        scores = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            score = item.get("score")
            # Labels with a missing or non-numeric score are ignored
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                continue
            scores[str(item.get("label", "")).lower()] = float(score)
        return scores

    async def analyze_sentiment(self, text: str, author_context: Optional[Dict[str, Any]] = None) -> float:
        """Sentiment in [0, 1]: 0 negative, 0.5 neutral, 1 positive"""
        if not text or not text.strip():
            return 0.5
        if not self.settings.huggingface_api_key:
            return fallback_sentiment(text)

        total = 0.0
        valid = 0
        for chunk in chunk_text(text):
            try:
                scores = self._label_scores(await self._inference(self.settings.sentiment_model, chunk))
            except Exception as e:
                logger.warning(f"Error analyzing sentiment chunk: {e}")
                continue
            if not scores:
                continue
            # The model labels negative / neutral / positive, older revisions 0 / 1 / 2
            positive = scores.get("positive", scores.get("2", scores.get("label_2", 0.0)))
            neutral = scores.get("neutral", scores.get("1", scores.get("label_1", 0.0)))
            total += positive + neutral * 0.5
            valid += 1

        if valid:
            return total / valid
        return fallback_sentiment(text)

    async def is_offensive_content(self, text: str, author_context: Optional[Dict[str, Any]] = None) -> bool:
        if not text or not text.strip():
            return False
        if not self.settings.huggingface_api_key:
            return fallback_is_offensive(text)

        try:
            scores = self._label_scores(await self._inference(self.settings.toxicity_model, text[:MAX_ANALYSIS_LENGTH]))
        except Exception as e:
            logger.warning(f"Toxicity check failed, using word list: {e}")
            return fallback_is_offensive(text)
        if not scores:
            return fallback_is_offensive(text)
        toxic = scores.get("toxic", 0.0)
        if toxic >= TOXICITY_THRESHOLD:
            author = (author_context or {}).get("userId", "unknown")
            logger.info(f"Toxicity {toxic:.2f} for text by user {author}")
            return True
        return False
