"""Built-in conversation flow templates."""

from behavior_engine.core.schemas_flows import (
    CompletionAction,
    ExitCondition,
    FlowStage,
    FlowTemplate,
)

JOURNAL_PROMPT = FlowTemplate(
    id="journal-prompt",
    name="Journal Prompt",
    description="Guided journaling conversation with reflection",
    target_exchange_count=4,
    allow_early_exit=True,
    stages=[
        FlowStage(
            id="initial-prompt",
            name="Opening Prompt",
            agent_prompt="Start with an open-ended, warm journal prompt. Keep it simple and inviting.",
            user_expectation="User shares initial thoughts",
            min_exchanges=1,
            max_exchanges=1,
        ),
        FlowStage(
            id="follow-up",
            name="Follow-up",
            agent_prompt="Ask a follow-up question based on what the user shared. Show genuine curiosity.",
            user_expectation="User elaborates on their thoughts",
            min_exchanges=1,
            max_exchanges=1,
        ),
        FlowStage(
            id="deeper-exploration",
            name="Deeper Exploration",
            agent_prompt="Invite deeper reflection. Ask about feelings, patterns, or connections.",
            user_expectation="User explores deeper meaning",
            min_exchanges=1,
            max_exchanges=2,
        ),
        FlowStage(
            id="reflection-closure",
            name="Reflection & Closure",
            agent_prompt="Acknowledge what was shared. Offer a reflection or insight. Prepare for closure.",
            user_expectation="User receives closure and feels heard",
            min_exchanges=1,
            max_exchanges=1,
        ),
    ],
    exit_conditions=[
        ExitCondition(
            type="exchange_count",
            condition=4,
            description="Completed 4 exchanges (natural flow completion)",
        ),
        ExitCondition(
            type="user_signal",
            condition=r"done|finished|that's all|nothing else",
            description="User signals they are done",
        ),
        ExitCondition(
            type="llm_eval",
            condition="conversation feels complete",
            description="LLM determines natural completion",
        ),
    ],
    completion_action=CompletionAction(type="save_journal", params={"category": "prompted_reflection"}),
)

GUIDED_EXERCISE = FlowTemplate(
    id="guided-exercise",
    name="Guided Exercise",
    description="Structured wellness exercise with steps and reflection",
    target_exchange_count=4,
    allow_early_exit=False,
    stages=[
        FlowStage(
            id="introduction",
            name="Introduction",
            agent_prompt="Introduce the exercise, explain what it involves, and get user buy-in.",
            user_expectation="User agrees to participate",
            min_exchanges=1,
            max_exchanges=1,
        ),
        FlowStage(
            id="activity-step-1",
            name="Activity Step 1",
            agent_prompt="Guide user through first step of the exercise. Be clear and supportive.",
            user_expectation="User completes first step",
            min_exchanges=1,
            max_exchanges=2,
        ),
        FlowStage(
            id="activity-step-2",
            name="Activity Step 2",
            agent_prompt="Guide user through second step. Build on what they did in step 1.",
            user_expectation="User completes second step",
            min_exchanges=1,
            max_exchanges=2,
        ),
        FlowStage(
            id="reflection",
            name="Reflection",
            agent_prompt="Ask user to reflect on the exercise. What did they notice? How do they feel?",
            user_expectation="User reflects on experience",
            min_exchanges=1,
            max_exchanges=1,
        ),
    ],
    exit_conditions=[
        ExitCondition(type="exchange_count", condition=5, description="Completed exercise flow"),
        ExitCondition(type="user_signal", condition="stop|exit|skip", description="User wants to exit early"),
    ],
    completion_action=CompletionAction(type="save_activity", params={"activity_type": "guided_exercise"}),
)

PROGRESS_ANALYSIS = FlowTemplate(
    id="progress-analysis",
    name="Progress Analysis",
    description="Review patterns and deliver insights",
    target_exchange_count=3,
    allow_early_exit=True,
    stages=[
        FlowStage(
            id="data-review",
            name="Data Review",
            agent_prompt="Present user with their recent activity patterns. Be specific with data.",
            user_expectation="User acknowledges and responds",
            min_exchanges=1,
            max_exchanges=1,
        ),
        FlowStage(
            id="insights",
            name="Insights",
            agent_prompt="Share 2-3 insights or patterns you noticed. Be supportive and constructive.",
            user_expectation="User reflects on insights",
            min_exchanges=1,
            max_exchanges=1,
        ),
        FlowStage(
            id="next-action",
            name="Next Action",
            agent_prompt="Suggest one concrete next step based on the analysis.",
            user_expectation="User considers next action",
            min_exchanges=1,
            max_exchanges=1,
        ),
    ],
    exit_conditions=[
        ExitCondition(type="exchange_count", condition=3, description="Completed progress analysis"),
    ],
    completion_action=CompletionAction(type="none"),
)

WEEKLY_PLANNING = FlowTemplate(
    id="weekly-planning",
    name="Weekly Planning",
    description="Set intentions and plan for the week ahead",
    target_exchange_count=4,
    allow_early_exit=True,
    stages=[
        FlowStage(
            id="check-in",
            name="Energy Check-in",
            agent_prompt="Ask about user's current energy and commitments for the week.",
            user_expectation="User shares their state and schedule",
            min_exchanges=1,
            max_exchanges=1,
        ),
        FlowStage(
            id="intentions",
            name="Set Intentions",
            agent_prompt="Help user set 3-5 intentions for the week. Be realistic and supportive.",
            user_expectation="User defines intentions",
            min_exchanges=1,
            max_exchanges=2,
        ),
        FlowStage(
            id="obstacles",
            name="Anticipate Obstacles",
            agent_prompt="Ask what might get in the way and help plan around it.",
            user_expectation="User identifies potential challenges",
            min_exchanges=1,
            max_exchanges=1,
        ),
        FlowStage(
            id="confirmation",
            name="Confirm Plan",
            agent_prompt="Summarize the plan and offer encouragement.",
            user_expectation="User feels prepared",
            min_exchanges=1,
            max_exchanges=1,
        ),
    ],
    exit_conditions=[
        ExitCondition(type="exchange_count", condition=4, description="Completed planning flow"),
    ],
    completion_action=CompletionAction(type="save_activity", params={"activity_type": "weekly_plan"}),
)

DEFAULT_FLOW_TEMPLATES: list[FlowTemplate] = [
    JOURNAL_PROMPT,
    GUIDED_EXERCISE,
    PROGRESS_ANALYSIS,
    WEEKLY_PLANNING,
]
