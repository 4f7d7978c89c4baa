"""Scheduled Slack notifications for new Claude Code releases.

Each notification pass detects a new upstream version, summarizes the
changes per language with Claude and delivers the summary to every
registered workspace. All coordination between passes goes through Redis.
"""

__version__ = "1.0.0"
