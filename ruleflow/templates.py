"""Ready-made rules users can start from."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel

from .contracts import InstructionStep, OutputConfig, RuleInput

TemplateCategory = Literal["email", "social", "productivity", "monitoring", "data"]

TEMPLATE_CATEGORIES: Dict[str, str] = {
    "email": "Email",
    "social": "Social Media",
    "productivity": "Productivity",
    "monitoring": "Monitoring",
    "data": "Data & Reports",
}


class RuleTemplate(BaseModel):
    id: str
    name: str
    description: str
    category: TemplateCategory
    rule: RuleInput


def _steps(*instructions: str) -> List[InstructionStep]:
    return [InstructionStep(content=text) for text in instructions]


RULE_TEMPLATES: List[RuleTemplate] = [
    RuleTemplate(
        id="daily-email-digest",
        name="Daily Email Digest",
        description="Summarize all unread emails every morning and send a digest.",
        category="email",
        rule=RuleInput(
            name="Daily Email Digest",
            description="Summarizes unread emails every morning",
            activation_mode="scheduled",
            schedule_enabled=True,
            schedule_interval="daily",
            topic_condition="Daily email summary",
            execution_steps=_steps(
                "Fetch all unread emails from Gmail",
                "Summarize each email in 1-2 sentences, grouped by sender",
                "Flag any emails that look urgent or time-sensitive",
            ),
        ),
    ),
    RuleTemplate(
        id="auto-reply-clients",
        name="Auto-Reply to Clients",
        description="When a client emails, acknowledge receipt and notify your team.",
        category="email",
        rule=RuleInput(
            name="Auto-Reply to Clients",
            description="Acknowledges client emails and notifies the team",
            accepted_triggers=["GMAIL_NEW_GMAIL_MESSAGE"],
            topic_condition="New email from a client or customer",
            execution_steps=_steps(
                "Check if the sender is a client (not internal, not spam/newsletter)",
                "Reply to the email thread acknowledging receipt: "
                '"Thanks for your email, we\'ll get back to you shortly."',
                "Send a Slack message to #team with a summary of the client email",
            ),
            output_config=OutputConfig(platform="slack", destination="#team"),
        ),
    ),
    RuleTemplate(
        id="email-label-organizer",
        name="Email Auto-Organizer",
        description="Automatically categorize and label incoming emails.",
        category="email",
        rule=RuleInput(
            name="Email Auto-Organizer",
            description="Labels and categorizes incoming emails automatically",
            accepted_triggers=["GMAIL_NEW_GMAIL_MESSAGE"],
            topic_condition="Any new email received",
            execution_steps=_steps(
                "Analyze the email content and determine category: "
                "work, personal, newsletter, billing, or spam",
                "Apply the appropriate Gmail label based on category",
                "If the email is urgent or from a VIP sender, star it",
            ),
        ),
    ),
    RuleTemplate(
        id="social-mention-monitor",
        name="Social Mention Monitor",
        description="Track mentions of your brand or keywords across social media.",
        category="social",
        rule=RuleInput(
            name="Social Mention Monitor",
            description="Monitors social media for brand mentions",
            activation_mode="scheduled",
            schedule_enabled=True,
            schedule_interval="hourly",
            topic_condition="Social media mention monitoring",
            execution_steps=_steps(
                "Search Twitter/X for mentions of [YOUR BRAND] or [YOUR KEYWORDS]",
                "Filter out spam and irrelevant results",
                "Summarize new mentions with sentiment (positive/negative/neutral) "
                "and send to Slack",
            ),
            output_config=OutputConfig(platform="slack", destination="#social"),
        ),
    ),
    RuleTemplate(
        id="content-repurposer",
        name="Content Repurposer",
        description="Turn a blog post or article into social media posts.",
        category="social",
        rule=RuleInput(
            name="Content Repurposer",
            description="Converts long-form content into social media posts",
            activation_mode="manual",
            topic_condition="Content repurposing request",
            execution_steps=_steps(
                "Read the provided article/blog post content",
                "Create 3 Twitter/X posts (under 280 chars each) highlighting key points",
                "Create 1 LinkedIn post (professional tone, 150-300 words)",
                "Suggest 5 relevant hashtags for each platform",
            ),
            output_config=OutputConfig(format="detailed"),
        ),
    ),
    RuleTemplate(
        id="morning-briefing",
        name="Morning Briefing",
        description="Daily summary of calendar, emails, and tasks to start your day.",
        category="productivity",
        rule=RuleInput(
            name="Morning Briefing",
            description="Daily morning summary of calendar, emails, and priorities",
            activation_mode="scheduled",
            schedule_enabled=True,
            schedule_interval="daily",
            topic_condition="Morning briefing",
            execution_steps=_steps(
                "Fetch today's calendar events and list them with times",
                "Summarize unread emails (top 5 most important)",
                "Check for any upcoming deadlines this week",
                "Compile everything into a brief morning report",
            ),
        ),
    ),
    RuleTemplate(
        id="meeting-prep",
        name="Meeting Prep Assistant",
        description="Before each meeting, gather context and prepare notes.",
        category="productivity",
        rule=RuleInput(
            name="Meeting Prep Assistant",
            description="Prepares context and notes before scheduled meetings",
            activation_mode="scheduled",
            schedule_enabled=True,
            schedule_interval="hourly",
            topic_condition="Upcoming meeting preparation",
            execution_steps=_steps(
                "Check calendar for meetings in the next 2 hours",
                "For each upcoming meeting, find related emails and previous notes",
                "Summarize key context: who's attending, what was discussed last time, "
                "any open action items",
                "Create a brief prep doc with talking points",
            ),
            output_config=OutputConfig(format="detailed"),
        ),
    ),
    RuleTemplate(
        id="weekly-review",
        name="Weekly Review",
        description="End-of-week summary of what happened and what's coming up.",
        category="productivity",
        rule=RuleInput(
            name="Weekly Review",
            description="Compiles a weekly summary every Friday",
            activation_mode="scheduled",
            schedule_enabled=True,
            schedule_interval="weekly",
            topic_condition="Weekly review summary",
            execution_steps=_steps(
                "Summarize all automation executions from this week "
                "(successes, failures, patterns)",
                "List key emails sent and received",
                "Review calendar for next week's important events",
                "Suggest priorities for next week based on patterns",
            ),
            output_config=OutputConfig(format="detailed"),
        ),
    ),
    RuleTemplate(
        id="github-issue-notifier",
        name="GitHub Issue Notifier",
        description="Get notified when new issues are created in your repos.",
        category="monitoring",
        rule=RuleInput(
            name="GitHub Issue Notifier",
            description="Monitors GitHub repos for new issues and notifies on Slack",
            accepted_triggers=["GITHUB_ISSUE_ADDED_EVENT"],
            topic_condition="New GitHub issue created",
            execution_steps=_steps(
                "Extract the issue title, description, labels, and author",
                "Classify priority based on labels and content (critical/high/medium/low)",
                "Send a formatted notification to Slack with issue details and priority",
            ),
            output_config=OutputConfig(platform="slack", destination="#dev"),
        ),
    ),
    RuleTemplate(
        id="competitor-tracker",
        name="Competitor Tracker",
        description="Monitor competitor activity and get weekly summaries.",
        category="monitoring",
        rule=RuleInput(
            name="Competitor Tracker",
            description="Tracks competitor news and product updates",
            activation_mode="scheduled",
            schedule_enabled=True,
            schedule_interval="daily",
            topic_condition="Competitor monitoring",
            execution_steps=_steps(
                "Search for recent news about [COMPETITOR 1], [COMPETITOR 2], [COMPETITOR 3]",
                "Check their social media for product announcements or updates",
                "Summarize any notable changes, launches, or moves",
                "If anything significant, flag it as high priority",
            ),
            output_config=OutputConfig(format="detailed"),
        ),
    ),
    RuleTemplate(
        id="lead-enrichment",
        name="Lead Enrichment",
        description="Enrich new leads with company info and add to your CRM.",
        category="data",
        rule=RuleInput(
            name="Lead Enrichment",
            description="Enriches new leads with company data and adds to CRM",
            activation_mode="manual",
            topic_condition="New lead to enrich",
            execution_steps=_steps(
                "Look up the company from the lead's email domain",
                "Find company size, industry, location, and recent news",
                "Score the lead based on company fit (1-10)",
                "Create a summary card with all enriched data",
            ),
            output_config=OutputConfig(format="detailed"),
        ),
    ),
    RuleTemplate(
        id="data-collector",
        name="Scheduled Data Collector",
        description="Collect data from APIs or websites on a schedule.",
        category="data",
        rule=RuleInput(
            name="Scheduled Data Collector",
            description="Periodically collects and stores data from configured sources",
            activation_mode="scheduled",
            schedule_enabled=True,
            schedule_interval="daily",
            topic_condition="Scheduled data collection",
            execution_steps=_steps(
                "Fetch data from [YOUR DATA SOURCE / API / WEBSITE]",
                "Parse and extract the relevant fields",
                "Compare with previous data to identify changes or trends",
                "Save results to a Google Sheet or Notion database",
            ),
            output_config=OutputConfig(format="raw"),
        ),
    ),
]


def get_template(template_id: str) -> Optional[RuleTemplate]:
    return next((t for t in RULE_TEMPLATES if t.id == template_id), None)


def templates_by_category() -> Dict[str, List[RuleTemplate]]:
    grouped: Dict[str, List[RuleTemplate]] = {category: [] for category in TEMPLATE_CATEGORIES}
    for template in RULE_TEMPLATES:
        grouped[template.category].append(template)
    return grouped


def build_rule_from_template(
    template_id: str, overrides: Optional[Dict[str, Any]] = None
) -> RuleInput:
    """Return a fresh :class:`RuleInput` from a template with ``overrides`` applied.

    Raises:
        KeyError: If no template has ``template_id``.
    """
    template = get_template(template_id)
    if template is None:
        raise KeyError(f"Unknown rule template: {template_id}")
    data = template.rule.model_dump()
    data.update(overrides or {})
    return RuleInput.model_validate(data)
