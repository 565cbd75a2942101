"""Infrastructure: database, security and GitHub App authentication"""
