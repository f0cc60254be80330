"""
Prompt text for the decision service.

Kept separate from the client so prompt wording can change without
touching transport code.
"""

from site_explorer.decision.models import DecisionRequest
from site_explorer.session.models import ExtractionResult

DECISION_SYSTEM_PROMPT = """You drive a web browser toward an objective, one tool call at a time.
You see a screenshot of the current page state. Base every decision on what the screenshot shows.

Tools:
- page_act: one interaction on the page (click, type, select, press a key, scroll, hover).
  Keep instructions short, e.g. "Click the 'About' link" or "Type {{login_email}} into the email field".
  Never delete or modify existing data.
- page_extract: capture structured information visible on the page.
- user_input: ask the human for values (credentials, OTP codes, confirmations). Ask only for what the page needs.
- standby: wait for a loading state to finish. Does not use up the page's step budget.

Stored user inputs are referenced as {{key}} placeholders inside page_act instructions;
the system substitutes the real value. Fill several fields with one page_act when you can.

When a page_act opens a different URL outside a sensitive flow, the new page is queued for
separate processing and the browser returns to the current page.

Set isInSensitiveFlow=true (with flowType) when a login, signup, verification, checkout, or
multi-step form begins, and isInSensitiveFlow=false once it is finished. Omit it otherwise.

Reply with ONLY a JSON object:
{
  "reasoning": "what you see and why you chose this tool",
  "tool_to_use": "page_act|page_extract|user_input|standby",
  "tool_parameters": {
    "instruction": "instruction for the tool",
    "inputs": [{"inputKey": "login_email", "inputType": "email", "inputPrompt": "Enter your email"}],
    "waitTimeSeconds": 5
  },
  "next_plan": "what you intend to do after this step",
  "isCurrentPageExecutionCompleted": false,
  "isInSensitiveFlow": false,
  "flowType": "login|signup|verification|checkout|form_submission"
}"""

EXPLORATORY_GUIDANCE = """Mode: EXPLORATION.
Extract the important content of this page first, then click links one per decision so new pages
get registered. Do not try to extract content from pages you click to; they are processed separately."""

TASK_GUIDANCE = """Mode: TASK.
Move efficiently toward the objective. Extract specific information once you find it."""

MAX_PAGES_GUIDANCE = """The page limit is reached: new URLs will not be explored.
Finish work on the current page and set isCurrentPageExecutionCompleted=true when done."""

OBJECTIVE_CHECK_PROMPT = """Objective: {objective}
Page: {url}
Last tool: {tool}
Outcome: {outcome}

Judging from the screenshot and the outcome, is the objective now fully achieved?
Reply with ONLY JSON: {{"objectiveAchieved": true|false, "reasoning": "..."}}"""

FORMAT_EXTRACTIONS_PROMPT = """Merge the extraction passes below for {url} into one readable markdown
summary. Keep every distinct fact, drop duplicates, and do not invent anything.

{previous}
{passes}"""


def render_decision_prompt(request: DecisionRequest, history_limit: int = 20) -> str:
    """Render the per-step context as text placed beside the screenshot."""
    lines = [
        f"Objective: {request.objective}",
        f"Current URL: {request.url}",
        f"Step: {request.step_number}",
        EXPLORATORY_GUIDANCE if request.is_exploratory else TASK_GUIDANCE,
    ]

    if request.remaining_steps is not None:
        lines.append(f"Counted steps left on this page: {request.remaining_steps}")
    if request.max_pages_reached:
        lines.append(MAX_PAGES_GUIDANCE)

    queued = [request.pages[h]["url"] for h in request.page_queue if h in request.pages]
    lines.append(f"Pages known: {len(request.pages)}; queued: {len(queued)}")
    for url in queued[:20]:
        lines.append(f"  - queued: {url}")

    if request.user_inputs:
        lines.append("Stored user inputs (use as {{key}}):")
        for key, data in request.user_inputs.items():
            lines.append(f"  - {key} ({data.get('type', 'text')})")

    flow = request.flow_context
    if flow.get("is_in_sensitive_flow"):
        lines.append(
            f"SENSITIVE FLOW ACTIVE ({flow.get('flow_type') or 'unknown'}), started at step "
            f"{flow.get('flow_start_step')}: URL changes are followed, not queued."
        )

    history = request.action_history[-history_limit:]
    if history:
        lines.append("Action history (do not repeat actions that already ran):")
        for entry in history:
            outcome = (
                f"URL changed to {entry.get('target_url')}" if entry.get("url_changed")
                else "URL unchanged"
            )
            status = "ok" if entry.get("success") else "failed"
            lines.append(
                f"  [{entry.get('step_number')}] \"{entry.get('instruction')}\" on "
                f"{entry.get('source_url')} -> {outcome} ({status})"
            )

    if request.conversation_history:
        lines.append("Conversation on this page so far:")
        for message in request.conversation_history[-history_limit:]:
            lines.append(f"  {message['role']}: {message['content']}")

    return "\n".join(lines)


def render_format_prompt(
    url: str,
    extractions: list[ExtractionResult],
    previous_summary: str | None = None,
) -> str:
    previous = f"Existing summary:\n{previous_summary}\n" if previous_summary else ""
    passes = "\n\n".join(
        f"Pass v{e.version} (step {e.step_number}):\n{e.raw_data}" for e in extractions
    )
    return FORMAT_EXTRACTIONS_PROMPT.format(url=url, previous=previous, passes=passes)
