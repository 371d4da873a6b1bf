"""Friendly names and icons for tool calls reported by the assistant CLI.

The classifier is a table of :class:`ToolRule` entries evaluated in order.
A rule matches either exact tool names (built-in tools such as ``Read``) or
an integration namespace prefix (``mcp__calendar__``). Supporting a new
integration means appending a rule, not editing :func:`describe_tool`.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

ToolInput = Mapping[str, Any]
Formatter = Callable[[ToolInput], str]
Describer = Callable[[str, ToolInput], str]

DEFAULT_ICON = "🔧"


@dataclass(frozen=True)
class ToolDisplay:
    friendly_name: str
    icon: str


@dataclass(frozen=True)
class ToolRule:
    """Map a family of tool names to a label formatter and an icon."""

    icon: str
    describe: Describer
    names: frozenset[str] = field(default_factory=frozenset)
    prefixes: tuple[str, ...] = ()
    # When set, only this exact prefix is removed from matching names; names
    # without it are passed through whole.
    strip: str | None = None

    def match(self, tool_name: str) -> str | None:
        """Return the action part of ``tool_name`` when this rule applies."""

        if tool_name in self.names:
            return tool_name
        matched = [prefix for prefix in self.prefixes if tool_name.startswith(prefix)]
        if not matched:
            return None
        if self.strip is not None:
            return tool_name.removeprefix(self.strip)
        return tool_name[len(max(matched, key=len)) :]


def truncate(value: str, limit: int) -> str:
    return value[:limit] + "..." if len(value) > limit else value


def _file_name(path: str) -> str:
    return posixpath.basename(path)


def _host(url: str) -> str:
    try:
        host = urlparse(url).hostname
    except ValueError:
        host = None
    return host or truncate(url, 30)


def from_input(
    key: str,
    template: str,
    default: str,
    *,
    limit: int | None = None,
    transform: Callable[[str], str] | None = None,
) -> Formatter:
    """Build a formatter that renders ``template`` with one input field."""

    def _format(tool_input: ToolInput) -> str:
        value = tool_input.get(key)
        if not value:
            return default
        text = str(value)
        if transform is not None:
            text = transform(text)
        elif limit is not None:
            text = truncate(text, limit)
        return template.format(text)

    return _format


def _humanize(action: str, separator: str) -> str:
    return action.replace(separator, " ")


def _account_suffix(tool_input: ToolInput) -> str:
    account = tool_input.get("account")
    return f" ({account})" if account else ""


def namespace(title: str, *, separator: str = "_", with_account: bool = False) -> Describer:
    """Describe every action in a namespace as ``"<title>: <action>"``."""

    def _describe(action: str, tool_input: ToolInput) -> str:
        suffix = _account_suffix(tool_input) if with_account else ""
        return f"{title}: {_humanize(action, separator)}{suffix}"

    return _describe


def action_table(
    title: str,
    actions: Mapping[str, str | Formatter],
    *,
    separator: str = "_",
) -> Describer:
    """Describe known actions from ``actions``, falling back to ``title``."""

    fallback = namespace(title, separator=separator)

    def _describe(action: str, tool_input: ToolInput) -> str:
        entry = actions.get(action)
        if entry is None:
            return fallback(action, tool_input)
        if isinstance(entry, str):
            return entry
        return entry(tool_input)

    return _describe


def fixed(label: str | Formatter) -> Describer:
    """Describe an exact-name tool with a constant label or a formatter."""

    def _describe(action: str, tool_input: ToolInput) -> str:
        if isinstance(label, str):
            return label
        return label(tool_input)

    return _describe


def _exact(name: str, icon: str, label: str | Formatter) -> ToolRule:
    return ToolRule(icon=icon, describe=fixed(label), names=frozenset({name}))


SLACK_ACTIONS: dict[str, str | Formatter] = {
    "list_channels": "Listing channels",
    "get_channel_history": from_input(
        "channel", "Reading #{}", "Reading channel", limit=20
    ),
    "get_thread_replies": "Reading thread replies",
    "post_message": from_input(
        "channel", "Posting to #{}", "Posting message", limit=20
    ),
    "reply_to_thread": "Replying to thread",
    "add_reaction": from_input("emoji", "Reacting with :{}:", "Adding reaction"),
    "get_users": "Getting users",
    "get_user_profile": "Getting user profile",
    "search_messages": from_input(
        "query", 'Searching: "{}"', "Searching messages", limit=25
    ),
    "list_workspaces": "Listing workspaces",
    "get_workspace_info": "Getting workspace info",
}

PLAYWRIGHT_ACTIONS: dict[str, str | Formatter] = {
    "browser_navigate": from_input("url", "Navigating → {}", "Navigating", transform=_host),
    "browser_click": from_input("element", "Clicking: {}", "Clicking element", limit=35),
    "browser_type": from_input("text", 'Typing: "{}"', "Typing text", limit=25),
    "browser_snapshot": "Reading page content",
    "browser_take_screenshot": "Taking screenshot",
    "browser_close": "Closing browser",
    "browser_hover": from_input("element", "Hovering: {}", "Hovering", limit=35),
    "browser_select_option": from_input(
        "element", "Selecting: {}", "Selecting option", limit=35
    ),
    "browser_fill_form": "Filling form fields",
    "browser_press_key": from_input("key", "Pressing key: {}", "Pressing key"),
    "browser_wait_for": from_input("text", 'Waiting for: "{}"', "Waiting", limit=25),
    "browser_tabs": from_input("action", "Tabs: {}", "Managing tabs"),
    "browser_evaluate": "Running JavaScript",
    "browser_console_messages": "Reading console logs",
    "browser_network_requests": "Reading network requests",
    "browser_resize": "Resizing browser",
    "browser_install": "Installing browser",
    "browser_handle_dialog": "Handling dialog",
    "browser_file_upload": "Uploading file",
    "browser_drag": "Dragging element",
    "browser_navigate_back": "Going back",
    "browser_run_code": "Running Playwright code",
}

DEFAULT_RULES: tuple[ToolRule, ...] = (
    ToolRule(
        icon="📅",
        describe=namespace("Calendar", separator="-", with_account=True),
        prefixes=("mcp__calendar__",),
    ),
    ToolRule(
        icon="📧",
        describe=namespace("Email", with_account=True),
        prefixes=("mcp__gmail__", "mcp__gmail-personal__"),
    ),
    ToolRule(
        icon="💬",
        describe=action_table("Slack", SLACK_ACTIONS),
        prefixes=("mcp__slack__",),
    ),
    ToolRule(
        icon="🌐",
        describe=action_table("Browser", PLAYWRIGHT_ACTIONS),
        prefixes=("mcp__plugin_playwright",),
        strip="mcp__plugin_playwright_playwright__",
    ),
    _exact(
        "Read",
        "📄",
        from_input("file_path", "Reading: {}", "Reading file", transform=_file_name),
    ),
    _exact(
        "Write",
        "✏️",
        from_input("file_path", "Writing: {}", "Writing file", transform=_file_name),
    ),
    _exact(
        "Edit",
        "📝",
        from_input("file_path", "Editing: {}", "Editing file", transform=_file_name),
    ),
    _exact("Glob", "🔎", from_input("pattern", "Glob: {}", "Searching files", limit=30)),
    _exact("Grep", "🔍", from_input("pattern", "Grep: {}", "Searching content", limit=30)),
    _exact("Bash", "💻", from_input("command", "Running: {}", "Running command", limit=35)),
    _exact(
        "WebSearch",
        "🌐",
        from_input("query", 'Searching: "{}"', "Searching web", limit=30),
    ),
    _exact(
        "WebFetch",
        "🌐",
        from_input("url", "Fetching: {}", "Fetching webpage", limit=35),
    ),
    _exact(
        "Task",
        "🤖",
        from_input("description", "Agent: {}", "Running agent", limit=35),
    ),
    _exact("TodoWrite", "✅", "Updating todos"),
    _exact("AskUserQuestion", "❓", "Asking question"),
)

_rules: list[ToolRule] = list(DEFAULT_RULES)


def register_tool_rule(rule: ToolRule, *, first: bool = False) -> None:
    """Add ``rule`` to the classifier table."""

    if first:
        _rules.insert(0, rule)
    else:
        _rules.append(rule)


def reset_tool_rules() -> None:
    """Restore the built-in classifier table."""

    _rules[:] = DEFAULT_RULES


def describe_tool(tool_name: str, tool_input: ToolInput | None = None) -> ToolDisplay:
    """Return the friendly label and icon for a tool call."""

    normalized: ToolInput = tool_input if isinstance(tool_input, Mapping) else {}
    for rule in _rules:
        action = rule.match(tool_name)
        if action is not None:
            return ToolDisplay(rule.describe(action, normalized), rule.icon)
    return ToolDisplay(tool_name, DEFAULT_ICON)


def display_input(tool_name: str, tool_input: Any) -> Any:
    """Return the subset of a tool's input that is echoed to the browser."""

    if not isinstance(tool_input, Mapping):
        return tool_input
    if tool_name == "Read" and tool_input.get("file_path"):
        return {"file": _file_name(str(tool_input["file_path"]))}
    if tool_name == "WebSearch" and tool_input.get("query"):
        return {"query": tool_input["query"]}
    if tool_name == "Grep" and tool_input.get("pattern"):
        return {"pattern": tool_input["pattern"]}
    return tool_input


__all__ = [
    "DEFAULT_ICON",
    "DEFAULT_RULES",
    "ToolDisplay",
    "ToolRule",
    "action_table",
    "describe_tool",
    "display_input",
    "fixed",
    "from_input",
    "namespace",
    "register_tool_rule",
    "reset_tool_rules",
    "truncate",
]
