"""
Metric calculation and score aggregation.

Everything here is pure: callers load the PR data and account settings, and
persist what comes back. Metric maps have the shape
``{category: {name: {"value", "score", "unit", "description"} | number | None}}``.
"""

import copy
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

CATEGORIES = ("efficiency", "wellness", "quality")

DEFAULT_CATEGORY_WEIGHTS = {"efficiency": 0.45, "wellness": 0.15, "quality": 0.40}

# Weight of a metric missing from the account's sub-category weights
UNLISTED_METRIC_WEIGHT = 0.1

NEUTRAL_SCORE = 50.0

DEFAULT_THRESHOLDS = {
    "prSize": {"min": 50, "ideal": 200, "max": 500},
    "reviewTime": {"target": 24},
    "workHoursWarning": {"percentage": 20},
}

DEFAULT_WORKING_HOURS = {"start": "09:00", "end": "17:00", "timezone": "UTC", "workDays": [1, 2, 3, 4, 5]}

SUB_CATEGORY_WEIGHTS = {
    "efficiency": {
        "prCycleTime": 0.15,
        "prSizeOptimization": 0.15,
        "reviewResponseTime": 0.10,
        "commitFrequency": 0.10,
        "wipManagement": 0.10,
        "mergeFrequency": 0.10,
        "firstResponseTime": 0.10,
        "prIterations": 0.10,
        "branchAge": 0.05,
        "prDependencies": 0.05,
    },
    "wellness": {
        "workHoursPattern": 0.15,
        "collaborationBalance": 0.15,
        "communicationTone": 0.10,
        "breakPatterns": 0.15,
        "feedbackReception": 0.10,
        "contextSwitching": 0.10,
        "workTypeBalance": 0.15,
        "proactiveWorkScore": 0.10,
    },
    "quality": {
        "testPresence": 0.25,
        "codePatterns": 0.20,
        "prDescriptionQuality": 0.10,
        "reviewThoroughness": 0.20,
        "documentationQuality": 0.15,
        "complexityTrends": 0.10,
    },
}

METRIC_DESCRIPTIONS = {
    "efficiency": {
        "prSize": "Number of lines changed in the pull request",
        "prSizeOptimization": "How close the pull request is to the ideal size",
        "prCycleTime": "Time from first commit to merge",
        "cycleTime": "Time from first commit to merge",
        "reviewResponseTime": "Average time for first review response",
        "commitFrequency": "Frequency of commits in the PR",
        "firstResponseTime": "Time to first review or comment",
        "prIterations": "Number of review iterations",
        "aiEfficiencyImpact": "Estimated minutes saved by implemented suggestions",
    },
    "wellness": {
        "workHoursPattern": "Distribution of work across hours of day",
        "collaborationBalance": "Balance between solo work and collaborative efforts",
        "communicationTone": "Sentiment analysis of comments and descriptions",
        "breakPatterns": "Gaps in activity indicating breaks",
        "contextSwitching": "Frequency of switching between unrelated tasks",
        "workTypeBalance": "Balance between feature and maintenance work",
    },
    "quality": {
        "testCoverage": "Percentage of code covered by tests",
        "testPresence": "Presence of tests for new code",
        "codePatterns": "Usage of recommended code patterns",
        "prDescriptionQuality": "Quality of PR description and documentation",
        "reviewThoroughness": "Thoroughness of code reviews",
        "documentationQuality": "Completeness and clarity of documentation",
        "codeComplexity": "Cyclomatic complexity of changes",
    },
}

CODE_EXTENSIONS = (
    ".js", ".jsx", ".ts", ".tsx", ".py", ".rb", ".java", ".c", ".cpp", ".cs",
    ".go", ".rs", ".php", ".swift", ".kt", ".scala", ".sh", ".bash", ".html",
    ".css", ".scss", ".sass", ".less", ".vue", ".svelte",
    ".md", ".markdown", ".json", ".yaml", ".yml", ".xml", ".txt", ".sql",
    ".prisma", ".graphql", ".env", ".toml", ".ini", ".config",
)

SOURCE_EXTENSIONS = (
    ".js", ".jsx", ".ts", ".tsx", ".py", ".rb", ".java", ".c", ".cpp", ".cs",
    ".go", ".rs", ".php", ".swift", ".kt", ".scala", ".vue", ".svelte",
)

_TEST_FILE_RE = re.compile(r"(^|/)(tests?|__tests__|spec)/|(^|/)test_[^/]+$|[._-](test|spec)\.[a-z]+$", re.IGNORECASE)


def metric_description(name: str, category: str) -> str:
    return METRIC_DESCRIPTIONS.get(category, {}).get(name, f"{category} metric: {name}")


def is_code_file(filename: str) -> bool:
    return filename.lower().endswith(CODE_EXTENSIONS)


def is_test_file(filename: str) -> bool:
    return bool(_TEST_FILE_RE.search(filename))


def clamp_score(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def default_settings(personal: bool) -> Dict[str, Any]:
    """Default account settings; personal accounts get more lenient thresholds."""
    thresholds = copy.deepcopy(DEFAULT_THRESHOLDS)
    if personal:
        thresholds["prSize"]["max"] = 400
        thresholds["reviewTime"]["target"] = 48
        thresholds["workHoursWarning"]["percentage"] = 30

    settings = {
        "workingHours": copy.deepcopy(DEFAULT_WORKING_HOURS),
        "metricWeights": {
            "efficiency": 0.33,
            "wellness": 0.33,
            "quality": 0.34,
            "subCategories": copy.deepcopy(SUB_CATEGORY_WEIGHTS),
        },
        "thresholds": thresholds,
        "levelThresholds": [
            {"level": 1, "name": "Novice", "points": 0},
            {"level": 2, "name": "Apprentice", "points": 100},
            {"level": 3, "name": "Coder", "points": 200},
            {"level": 4, "name": "Developer", "points": 300},
        ],
    }
    if not personal:
        settings["teamFeatures"] = {"enabled": True, "dashboards": True, "leaderboards": True}
    return settings


def _threshold(settings: Dict[str, Any], group: str, key: str) -> float:
    thresholds = (settings or {}).get("thresholds") or {}
    value = (thresholds.get(group) or {}).get(key)
    if value is None:
        value = DEFAULT_THRESHOLDS[group][key]
    return float(value)


def metric(value: Optional[float], score: float, unit: str, name: str, category: str) -> Dict[str, Any]:
    return {
        "value": value,
        "score": round(clamp_score(score), 2),
        "unit": unit,
        "description": metric_description(name, category),
    }


@dataclass
class MetricsContext:
    """Inputs of a metrics calculation for one PR"""
    additions: int = 0
    deletions: int = 0
    opened_at: Optional[datetime] = None
    first_commit_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    author_id: Optional[str] = None
    description: Optional[str] = None
    filenames: List[str] = field(default_factory=list)
    commit_times: List[datetime] = field(default_factory=list)
    review_times: List[datetime] = field(default_factory=list)
    participant_ids: List[str] = field(default_factory=list)  # reviewers and commenters
    comment_sentiments: List[float] = field(default_factory=list)
    code_analysis_score: Optional[float] = None
    settings: Dict[str, Any] = field(default_factory=dict)


def _hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return max(0.0, (end - start).total_seconds() / 3600.0)


def _time_score(hours: float, target: float) -> float:
    """100 up to the target, then linear down to 0 at three times the target"""
    if hours <= target:
        return 100.0
    return 100.0 - 50.0 * (hours - target) / target


def pr_size_optimization(ctx: MetricsContext) -> Dict[str, Any]:
    lines = (ctx.additions or 0) + (ctx.deletions or 0)
    ideal = _threshold(ctx.settings, "prSize", "ideal")
    maximum = _threshold(ctx.settings, "prSize", "max")
    if lines <= ideal:
        score = 100.0
    elif lines <= maximum:
        score = 100.0 - 40.0 * (lines - ideal) / max(maximum - ideal, 1.0)
    else:
        score = 60.0 - 60.0 * (lines - maximum) / maximum
    return metric(lines, score, "lines", "prSizeOptimization", "efficiency")


def pr_cycle_time(ctx: MetricsContext) -> Optional[Dict[str, Any]]:
    end = ctx.merged_at or ctx.closed_at
    hours = _hours_between(ctx.first_commit_at or ctx.opened_at, end)
    if hours is None:
        return None
    # Cycle time gets twice the review target
    target = 2 * _threshold(ctx.settings, "reviewTime", "target")
    return metric(round(hours, 2), _time_score(hours, target), "hours", "prCycleTime", "efficiency")


def review_response_time(ctx: MetricsContext) -> Optional[Dict[str, Any]]:
    if not ctx.review_times:
        return None
    hours = _hours_between(ctx.opened_at, min(ctx.review_times))
    if hours is None:
        return None
    target = _threshold(ctx.settings, "reviewTime", "target")
    return metric(round(hours, 2), _time_score(hours, target), "hours", "reviewResponseTime", "efficiency")


def commit_frequency(ctx: MetricsContext) -> Optional[Dict[str, Any]]:
    commits = len(ctx.commit_times)
    if commits == 0:
        return None
    lines_per_commit = ((ctx.additions or 0) + (ctx.deletions or 0)) / commits
    if lines_per_commit <= 100:
        score = 100.0
    else:
        score = 100.0 - (lines_per_commit - 100) / 5.0
    return metric(commits, score, "commits", "commitFrequency", "efficiency")


def _parse_hour(value: str, default: int) -> int:
    try:
        return int(str(value).split(":")[0])
    except (TypeError, ValueError):
        return default


def is_within_working_hours(moment: datetime, working_hours: Dict[str, Any]) -> bool:
    start = _parse_hour(working_hours.get("start", "09:00"), 9)
    end = _parse_hour(working_hours.get("end", "17:00"), 17)
    work_days = working_hours.get("workDays") or [1, 2, 3, 4, 5]
    return moment.isoweekday() in work_days and start <= moment.hour < end


def work_hours_pattern(ctx: MetricsContext) -> Optional[Dict[str, Any]]:
    if not ctx.commit_times:
        return None
    working_hours = (ctx.settings or {}).get("workingHours") or DEFAULT_WORKING_HOURS
    outside = sum(1 for t in ctx.commit_times if not is_within_working_hours(t, working_hours))
    percentage = 100.0 * outside / len(ctx.commit_times)
    warning = _threshold(ctx.settings, "workHoursWarning", "percentage")
    if percentage <= warning:
        score = 100.0 - percentage
    else:
        score = 100.0 - warning - 2.0 * (percentage - warning)
    return metric(round(percentage, 2), score, "%", "workHoursPattern", "wellness")


def collaboration_balance(ctx: MetricsContext) -> Dict[str, Any]:
    others = {p for p in ctx.participant_ids if p and p != ctx.author_id}
    score = {0: 40.0, 1: 75.0}.get(len(others), 100.0)
    return metric(len(others), score, "people", "collaborationBalance", "wellness")


def communication_tone(ctx: MetricsContext) -> Optional[Dict[str, Any]]:
    if not ctx.comment_sentiments:
        return None
    average = sum(ctx.comment_sentiments) / len(ctx.comment_sentiments)
    return metric(round(average, 3), average * 100.0, "sentiment", "communicationTone", "wellness")


def test_presence(ctx: MetricsContext) -> Optional[Dict[str, Any]]:
    tests = [f for f in ctx.filenames if is_test_file(f)]
    sources = [f for f in ctx.filenames if f.lower().endswith(SOURCE_EXTENSIONS) and not is_test_file(f)]
    if not sources:
        return None
    return metric(len(tests), 100.0 if tests else 40.0, "files", "testPresence", "quality")


def pr_description_quality(ctx: MetricsContext) -> Dict[str, Any]:
    length = len((ctx.description or "").strip())
    if length == 0:
        score = 20.0
    elif length < 50:
        score = 50.0
    elif length < 200:
        score = 75.0
    else:
        score = 100.0
    return metric(length, score, "chars", "prDescriptionQuality", "quality")


def code_patterns(ctx: MetricsContext) -> Optional[Dict[str, Any]]:
    if ctx.code_analysis_score is None:
        return None
    return metric(ctx.code_analysis_score, ctx.code_analysis_score, "score", "codePatterns", "quality")


def calculate_metrics(ctx: MetricsContext) -> Dict[str, Dict[str, Optional[Dict[str, Any]]]]:
    """Compute every metric; metrics without enough data are None"""
    return {
        "efficiency": {
            "prSizeOptimization": pr_size_optimization(ctx),
            "prCycleTime": pr_cycle_time(ctx),
            "reviewResponseTime": review_response_time(ctx),
            "commitFrequency": commit_frequency(ctx),
        },
        "wellness": {
            "workHoursPattern": work_hours_pattern(ctx),
            "collaborationBalance": collaboration_balance(ctx),
            "communicationTone": communication_tone(ctx),
        },
        "quality": {
            "testPresence": test_presence(ctx),
            "prDescriptionQuality": pr_description_quality(ctx),
            "codePatterns": code_patterns(ctx),
        },
    }


def metric_score(value: Any) -> Optional[float]:
    """Score of a metric entry: a bare number, or a mapping with 'score'"""
    if isinstance(value, dict):
        value = value.get("score")
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score):
        return None
    return score


def sub_category_weights(settings: Optional[Dict[str, Any]], category: str) -> Dict[str, float]:
    metric_weights = (settings or {}).get("metricWeights") or {}
    return (metric_weights.get("subCategories") or {}).get(category) or {}


def calculate_category_score(
    metrics: Dict[str, Any], weights: Optional[Dict[str, float]] = None
) -> float:
    """
    Weighted mean of the metric scores of one category.

    Metrics missing from `weights` count with a weight of 0.1. A category
    with no usable metric scores the neutral 50.
    """
    weights = weights or {}
    total = 0.0
    weight_sum = 0.0
    for name, value in (metrics or {}).items():
        score = metric_score(value)
        if score is None:
            continue
        weight = float(weights.get(name, UNLISTED_METRIC_WEIGHT))
        total += clamp_score(score) * weight
        weight_sum += weight
    if weight_sum <= 0:
        return NEUTRAL_SCORE
    return round(clamp_score(total / weight_sum), 2)


def category_weights(settings: Optional[Dict[str, Any]]) -> Dict[str, float]:
    metric_weights = (settings or {}).get("metricWeights") or {}
    weights = {}
    for category in CATEGORIES:
        value = metric_weights.get(category)
        weights[category] = float(value) if isinstance(value, (int, float)) else DEFAULT_CATEGORY_WEIGHTS[category]
    return weights


def calculate_overall_score(scores: Dict[str, float], settings: Optional[Dict[str, Any]] = None) -> float:
    """Weighted mean of the category scores, normalized by the weight sum"""
    weights = category_weights(settings)
    weight_sum = sum(weights[c] for c in CATEGORIES if scores.get(c) is not None)
    if weight_sum <= 0:
        return NEUTRAL_SCORE
    total = sum(clamp_score(scores[c]) * weights[c] for c in CATEGORIES if scores.get(c) is not None)
    return round(clamp_score(total / weight_sum), 2)


def calculate_scores(metrics: Dict[str, Dict[str, Any]], settings: Optional[Dict[str, Any]] = None) -> Dict[str, float]:
    scores = {
        category: calculate_category_score(metrics.get(category) or {}, sub_category_weights(settings, category))
        for category in CATEGORIES
    }
    scores["overall"] = calculate_overall_score(scores, settings)
    return scores


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (not banker's rounding)"""
    return int(math.floor(float(value) + 0.5))


def calculate_points(scores: Dict[str, float]) -> int:
    return (
        round_half_up((scores.get("efficiency") or 0) * 0.45)
        + round_half_up((scores.get("wellness") or 0) * 0.15)
        + round_half_up((scores.get("quality") or 0) * 0.40)
    )


def level_for_points(points: int) -> int:
    return points // 100 + 1


def feedback_score(feedback: Sequence[Dict[str, Any]]) -> float:
    """
    Code analysis score from feedback items: 80 base, +5 per highlight,
    -2 per suggestion, -5 per warning. No feedback scores 100.
    """
    if not feedback:
        return 100.0
    counts = {"highlight": 0, "suggestion": 0, "warning": 0}
    for item in feedback:
        kind = item.get("type") if isinstance(item, dict) else None
        if kind in counts:
            counts[kind] += 1
    score = 80 + counts["highlight"] * 5 - counts["suggestion"] * 2 - counts["warning"] * 5
    return clamp_score(score)
