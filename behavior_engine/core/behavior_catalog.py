"""Default behavior catalog for the wellness companion.

Operators may replace this list entirely; the engine only ever reads it.
Trigger phrases are seed text for the trigger index (see scripts/seed_triggers.py).
"""

from behavior_engine.core.schemas_behaviors import Behavior, ChannelType

U = ChannelType.USER_MESSAGE
T = ChannelType.AGENT_THOUGHT
X = ChannelType.EXTERNAL_CONTEXT
C = ChannelType.COMBINED_EXCHANGE
A = ChannelType.AGENT_MESSAGE
K = ChannelType.TOOL_CALL


DEFAULT_BEHAVIORS: list[Behavior] = [
    Behavior(
        id="difficult-emotion-processing",
        name="Difficult Emotion Processing",
        description="Activated when user expresses distress or difficult emotions",
        category="emotional_support",
        priority=10,
        trigger_phrases={
            U: [
                "I'm feeling really overwhelmed right now",
                "I can't cope with this anymore",
                "I'm so anxious I can barely breathe",
                "everything feels like it's falling apart",
                "I feel hopeless and alone",
            ],
            T: [
                "The user is in acute emotional distress and needs grounding and validation",
                "The user sounds overwhelmed and may be spiraling",
            ],
            C: ["Agent: How are you feeling today?\nUser: Honestly, terrible. I'm breaking down."],
        },
    ),
    Behavior(
        id="inner-child-work",
        name="Inner Child Healing",
        description="Guides gentle exploration and reparenting of wounded inner child",
        category="emotional_support",
        priority=9,
        trigger_phrases={
            U: [
                "this reminds me of how I felt as a kid",
                "my parents never listened to me growing up",
                "I still carry wounds from my childhood",
            ],
            T: ["The user is connecting present pain to childhood memories and attachment wounds"],
        },
    ),
    Behavior(
        id="boundary-setting",
        name="Boundary Work",
        description="Helps identify needs and practice setting healthy boundaries",
        category="relationships",
        priority=8,
        trigger_phrases={
            U: [
                "I can never say no to people",
                "my boss keeps asking me to work weekends",
                "I feel like my family takes advantage of me",
            ],
            T: ["The user struggles to protect their limits in a relationship or at work"],
        },
    ),
    Behavior(
        id="self-compassion-exercise",
        name="Self-Compassion Practice",
        description="Guides structured self-compassion when user is self-critical",
        category="emotional_support",
        priority=9,
        trigger_phrases={
            U: [
                "I'm such an idiot, I messed everything up",
                "I hate myself for making that mistake",
                "I always fail at everything",
            ],
            T: ["The user is being harshly self-critical after a perceived failure"],
        },
    ),
    Behavior(
        id="weekly-planning",
        name="Weekly Planning",
        description="Helps user plan and set intentions for the upcoming week",
        category="planning",
        priority=7,
        flow_id="weekly-planning",
        trigger_phrases={
            U: [
                "help me plan my week",
                "what should I focus on this week",
                "I want to set some intentions for the week ahead",
            ],
            X: [
                "Current time: morning Sunday.",
                "Current time: morning Monday.",
            ],
        },
    ),
    Behavior(
        id="weekly-review",
        name="Weekly Review",
        description="Helps user reflect on and learn from their past week",
        category="reflection",
        priority=7,
        trigger_phrases={
            U: [
                "let's look back on my week",
                "this week was a lot, I want to reflect on it",
                "what did I learn this week",
            ],
            X: [
                "Current time: evening Friday.",
                "Current time: afternoon Sunday.",
            ],
        },
    ),
    Behavior(
        id="gratitude-practice",
        name="Gratitude Practice",
        description="Guides deep, specific gratitude practice",
        category="practice",
        priority=6,
        trigger_phrases={
            U: [
                "I want to focus on what I'm grateful for",
                "something good happened today",
                "I'm thankful for my friends",
            ],
        },
    ),
    Behavior(
        id="cognitive-reframing",
        name="Cognitive Reframing",
        description="Gently challenges cognitive distortions through Socratic questioning",
        category="emotional_support",
        priority=8,
        trigger_phrases={
            U: [
                "everyone must think I'm a failure",
                "this is always going to go wrong",
                "if I don't get this perfect it's a disaster",
            ],
            T: ["The user is catastrophizing or thinking in all-or-nothing terms"],
        },
    ),
    Behavior(
        id="goal-setting",
        name="Goal Setting & Tracking",
        description="Helps set realistic, achievable goals with concrete action steps",
        category="planning",
        priority=6,
        trigger_phrases={
            U: [
                "I want to set a goal for myself",
                "how do I make progress on my goals",
                "I keep wanting to start exercising but never do",
            ],
        },
    ),
    Behavior(
        id="energy-checkin",
        name="Energy & Mood Check-in",
        description="Quick practical check-in with immediate next step",
        category="check_in",
        priority=5,
        trigger_phrases={
            U: [
                "I'm so tired today",
                "my energy is really low",
                "just checking in",
            ],
            X: ["Current time: afternoon Wednesday."],
        },
    ),
    Behavior(
        id="values-clarification",
        name="Values Clarification",
        description="Explores and clarifies core values",
        category="reflection",
        priority=6,
        trigger_phrases={
            U: [
                "I don't know what really matters to me",
                "I feel like I'm living someone else's life",
                "what do I actually care about",
            ],
        },
    ),
    Behavior(
        id="journal-prompt",
        name="Journal Prompt",
        description="Guided reflection journaling session that ends in a saved entry",
        category="reflection",
        priority=6,
        flow_id="journal-prompt",
        trigger_phrases={
            U: [
                "I want to journal",
                "can you give me a journaling prompt",
                "help me write about my day",
            ],
            A: ["Would you like to try a short journaling prompt?"],
            K: ["Called get_available_activities with params {\"category\": \"journaling\"}"],
        },
    ),
    Behavior(
        id="guided-exercise",
        name="Guided Exercise",
        description="Step-by-step breathing or grounding exercise",
        category="practice",
        priority=7,
        flow_id="guided-exercise",
        trigger_phrases={
            U: [
                "can we do a breathing exercise",
                "walk me through a grounding exercise",
                "I need to calm down, guide me",
            ],
            K: ["Called search_activities with params {\"query\": \"breathing\"}"],
        },
    ),
    Behavior(
        id="progress-analysis",
        name="Progress Analysis",
        description="Reviews journal history to surface patterns and growth",
        category="reflection",
        priority=5,
        flow_id="progress-analysis",
        trigger_phrases={
            U: [
                "how have I been doing lately",
                "show me my progress",
                "have my moods changed over the last month",
            ],
        },
    ),
    Behavior(
        id="free-form-chat",
        name="Free-form Chat",
        description="Default behavior - open, supportive conversation",
        category="general",
        priority=1,
        trigger_phrases={
            U: [
                "hey, how's it going",
                "I just want to talk",
            ],
        },
    ),
]
