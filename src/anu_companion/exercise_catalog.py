"""Fixed catalog of guided exercise flows, looked up by normalized category."""

from __future__ import annotations

import re

from anu_companion.models import ExerciseFlowDefinition, ExerciseStep

_DEEPEN = (
    "The user has not fully engaged with this step yet. Reflect back what they shared, "
    "then ask one gentle, more specific question that helps them go deeper. "
)


def _step(title: str, goal: str, initial: str, deepening: str = "") -> ExerciseStep:
    return ExerciseStep(
        title=title,
        goal=goal,
        initial_prompt=initial,
        deepening_prompt=_DEEPEN + (deepening or f"Stay with the goal: {goal.lower()}"),
    )


_FLOWS: tuple[ExerciseFlowDefinition, ...] = (
    ExerciseFlowDefinition(
        category="automatic-thoughts",
        name="Recognizing Automatic Thoughts",
        keywords=("automatic thoughts", "thought patterns", "negative thoughts", "cognitive", "cbt"),
        steps=(
            _step(
                "Welcome & Awareness",
                "Recall a recent upsetting situation",
                "Ask the user to think of a recent situation where they felt upset, anxious, or "
                "stressed, and encourage them to share what happened.",
                "Ask where they were, who was there, and what they felt in the moment.",
            ),
            _step(
                "Identifying the Thought",
                "Name the specific automatic thought",
                "Help the user identify the automatic thought that came up in that situation. "
                'Ask "What was going through your mind in that moment?"',
                "Help them separate the situation and the feeling from the thought itself.",
            ),
            _step(
                "Examining the Evidence",
                "Look at the thought objectively",
                "Guide the user to examine the thought more objectively: what evidence supports "
                "it, and what evidence goes against it?",
                "Ask what they would tell a friend who had the same thought.",
            ),
            _step(
                "Reframing & Integration",
                "Develop a balanced perspective",
                "Help the user develop a more balanced, realistic thought to replace the automatic "
                "one. Praise their work and suggest practicing this skill daily.",
                "Invite them to put the balanced thought into their own words.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="breathing",
        name="4-7-8 Breathing",
        keywords=("breathing", "breath", "4-7-8"),
        steps=(
            _step(
                "Setup & First Cycle",
                "Learn the 4-7-8 pattern",
                "Guide the user to get comfortable. Explain the 4-7-8 pattern and walk them through "
                "one slow cycle together, counting aloud.",
            ),
            _step(
                "Guided Practice Session",
                "Practice several cycles with guidance",
                "Guide the user through 4-5 complete cycles of 4-7-8 breathing. Count each cycle "
                "clearly and offer gentle encouragement between them.",
                "Ask what they noticed in their body during the cycles and offer one more together.",
            ),
            _step(
                "Integration & Daily Use",
                "Apply the technique in daily life",
                "Ask the user how they feel now compared to when they started. Discuss when they "
                "might use this technique in their daily life.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="mindfulness",
        name="Body Scan",
        keywords=("body scan", "mindfulness", "body awareness"),
        steps=(
            _step(
                "Settling In",
                "Prepare for body awareness",
                "Guide the user to find a comfortable position. Invite them to close their eyes if "
                "they wish and to be present with the sensations of their body.",
            ),
            _step(
                "Guided Scan",
                "Scan the body mindfully",
                "Guide the user's attention through different parts of the body, starting with the "
                "feet and moving slowly up to the head.",
                "Ask which area felt tense or relaxed and guide a few breaths into it.",
            ),
            _step(
                "Integration",
                "Carry awareness into the present",
                "Ask the user to notice any shifts in how they feel and to bring this awareness into "
                "the rest of their day.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="gratitude",
        name="Gratitude Practice",
        keywords=("gratitude", "appreciation", "thankful"),
        steps=(
            _step(
                "Finding the Feeling",
                "Recall moments of gratitude",
                "Ask the user to think of a few things they are truly grateful for and to share one.",
            ),
            _step(
                "Deepening the Feeling",
                "Explore the feeling of gratitude",
                "Help the user explore what made them grateful for that moment. Ask them to describe "
                "how it felt in their body.",
            ),
            _step(
                "Expanding the Practice",
                "Integrate gratitude into daily life",
                "Ask the user how they can bring more of this feeling into daily life, and end on an "
                "encouraging note.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="self-compassion",
        name="Self-Compassion Break",
        keywords=("self-compassion", "self compassion", "kind to yourself", "self-care"),
        steps=(
            _step(
                "Acknowledging the Struggle",
                "Recognize a difficult moment",
                "Ask the user to bring to mind a situation that is currently causing them pain.",
            ),
            _step(
                "Common Humanity",
                "Connect the struggle to shared human experience",
                "Guide the user to reflect that they are not alone in their suffering. All humans "
                "struggle sometimes.",
            ),
            _step(
                "Self-Kindness",
                "Respond to oneself with kindness",
                "Ask the user to offer themselves a kind, comforting phrase they would give a friend "
                "who was suffering in the same way.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="values-clarification",
        name="Living Closer to My Values",
        keywords=("values", "meaning", "purpose", "what matters"),
        steps=(
            _step(
                "Identifying Values",
                "Discover core values",
                "Ask the user what is most important to them in life. Encourage them to share a few "
                "core values that come to mind.",
            ),
            _step(
                "Aligning Actions",
                "Connect values to behavior",
                "Ask the user to think of a recent action and reflect on whether it was in line with "
                "their values.",
            ),
            _step(
                "Setting Intentions",
                "Create a values-driven path",
                "Guide the user to set a small, actionable intention for the week that helps them "
                "live closer to their values.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="future-self-journaling",
        name="Future Self Journaling",
        keywords=("future self", "future", "dreams", "journaling", "clarity"),
        steps=(
            _step(
                "Welcome & Intention",
                "Set a gentle focus",
                "Encourage the user to open the exercise with presence and set an intention for "
                "exploring their future self.",
            ),
            _step(
                "Envisioning the Future Self",
                "Imagine a future version of oneself in daily life",
                "Guide the user to picture their future self: how they live, feel, and carry "
                "themselves in different parts of life.",
            ),
            _step(
                "Exploring Character & Values",
                "Reflect on the future self's inner qualities",
                "Encourage the user to focus on the strengths and values that define their future "
                "self and how these shape their way of being.",
            ),
            _step(
                "Dialogue Across Time",
                "Connect present and future",
                "Invite the user to imagine an exchange with their future self, noticing what "
                "guidance or reassurance arises.",
            ),
            _step(
                "Integration & Takeaway",
                "Bring one insight into the present",
                "Support the user in capturing one key takeaway from their future self and grounding "
                "it as a reminder for daily life.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="sorting-thoughts",
        name="Sorting Thoughts",
        keywords=("sorting thoughts", "organize thoughts", "overwhelmed", "mental clutter", "clear mind"),
        steps=(
            _step(
                "Welcome & Awareness",
                "Open space to share current thoughts",
                "Invite the user to share the thoughts on their mind right now.",
            ),
            _step(
                "Organizing",
                "Bring structure and clarity",
                "Support the user in sorting these thoughts, noticing what feels most important and "
                "what feels secondary.",
            ),
            _step(
                "Integration",
                "End with reflection",
                "Encourage the user to notice how it feels to see their thoughts more clearly and "
                "what takeaway they want to hold onto.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="vision-of-future",
        name="Vision of the Future",
        keywords=("vision", "vision of the future", "life vision", "ideal life"),
        requires_recap=True,
        steps=(
            _step(
                "Opening the Vision",
                "Choose an area of life to envision",
                "Ask the user which area of life they would most like to envision: relationships, "
                "work, health, home, or something else.",
            ),
            _step(
                "Painting the Picture",
                "Describe the vision concretely",
                "Invite the user to describe a day in that future in vivid, sensory detail: where "
                "they are, who is with them, how it feels.",
                "Ask for one concrete detail they can see, hear, or feel in that future day.",
            ),
            _step(
                "Meaning Behind the Vision",
                "Find what the vision says about what matters",
                "Help the user explore why this vision matters to them and which values it expresses.",
            ),
            _step(
                "First Step",
                "Anchor the vision in a small present action",
                "Guide the user to name one small step they could take this week toward the vision.",
            ),
        ),
    ),
    ExerciseFlowDefinition(
        category="therapy-goal-definition",
        name="Defining My Therapy Goals",
        keywords=("goal setting", "therapy goals", "set goals", "what i want to change"),
        requires_recap=True,
        steps=(
            _step(
                "What Brings You Here",
                "Name what the user wants to work on",
                "Ask the user what brought them here and what they most hope will be different.",
            ),
            _step(
                "Shaping the Goal",
                "Turn the hope into a specific, reachable goal",
                "Help the user turn that hope into one specific goal they could notice progress on.",
                "Ask how they would know, day to day, that things were getting better.",
            ),
            _step(
                "Obstacles & Support",
                "Anticipate obstacles and resources",
                "Explore what might get in the way and what strengths or people could support them.",
            ),
            _step(
                "Commitment",
                "Agree on a first step",
                "Invite the user to commit to a first small step and restate their goal in their own "
                "words.",
            ),
        ),
    ),
)

EXERCISE_FLOWS: dict[str, ExerciseFlowDefinition] = {flow.category: flow for flow in _FLOWS}

_ALIASES = {
    "4-7-8": "breathing",
    "box-breathing": "breathing",
    "body-scan": "mindfulness",
    "morning-mindfulness": "mindfulness",
    "future-self": "future-self-journaling",
    "vision": "vision-of-future",
    "vision-of-the-future": "vision-of-future",
    "goal-setting": "therapy-goal-definition",
    "therapy-goals": "therapy-goal-definition",
}

_SEPARATORS = re.compile(r"[\s_]+")


def normalize_category(descriptor: str) -> str:
    """Map any exercise descriptor (type, display name, alias) to its canonical category."""
    key = _SEPARATORS.sub("-", (descriptor or "").strip().lower())
    if key in EXERCISE_FLOWS:
        return key
    if "breathing" in key:
        return "breathing"
    if key in _ALIASES:
        return _ALIASES[key]
    for flow in _FLOWS:
        if _SEPARATORS.sub("-", flow.name.lower()) == key:
            return flow.category
    return key


def get_exercise_flow(descriptor: str) -> ExerciseFlowDefinition | None:
    return EXERCISE_FLOWS.get(normalize_category(descriptor))


def exercise_keywords() -> dict[str, tuple[str, ...]]:
    return {flow.category: flow.keywords for flow in _FLOWS}
