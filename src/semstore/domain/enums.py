"""Domain enumerations for semstore."""

from __future__ import annotations

from enum import Enum


class ContentTag(str, Enum):
    """Semantic labels attached to stored content by upstream taggers."""

    COMMITMENT = "commitment"
    FOLLOWUP_REQUIRED = "followup_required"
    URGENT_ACTION = "urgent_action"
    REMINDER = "reminder"
    ACTION_ITEM = "action_item"
    MEETING_NOTES = "meeting_notes"
    EMAIL_THREAD = "email_thread"
    CODE_SNIPPET = "code_snippet"
    URL_LINK = "url_link"
    CONTACT_INFO = "contact_info"
    DEADLINE = "deadline"
    QUESTION = "question"
    IMPORTANT = "important"
    COMMUNICATION = "communication"
    CLIPBOARD = "clipboard"
    TASK = "task"


class MatchSource(str, Enum):
    """How a ranked result was produced."""

    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    FUSION = "fusion"
    FILTER = "filter"
