import unittest

from anu_companion.exercise_detection import (
    detect_exercise_confirmation,
    detect_exercise_suggestion,
    structured_exercise_offer,
)
from anu_companion.models import Message


def _assistant(text: str) -> Message:
    return Message.create("assistant", text)


class DetectExerciseSuggestionTests(unittest.TestCase):
    def test_offer_with_known_keyword(self) -> None:
        self.assertEqual("breathing", detect_exercise_suggestion("Would you like to try a breathing exercise?"))
        self.assertEqual("gratitude", detect_exercise_suggestion("A short gratitude practice might help."))

    def test_no_offer_phrase(self) -> None:
        self.assertIsNone(detect_exercise_suggestion("Your breathing sounds shallow today."))

    def test_offer_without_known_exercise(self) -> None:
        self.assertIsNone(detect_exercise_suggestion("Would you like to try something new?"))


class DetectExerciseConfirmationTests(unittest.TestCase):
    def test_yes_after_offer(self) -> None:
        recent = [
            Message.create("user", "I can't calm down"),
            _assistant("Would you like to try a breathing exercise together?"),
        ]
        flow = detect_exercise_confirmation("Yes please", recent)
        self.assertIsNotNone(flow)
        self.assertEqual("breathing", flow.category)

    def test_newest_offer_wins(self) -> None:
        recent = [
            _assistant("Would you like to try a gratitude exercise?"),
            _assistant("Or maybe a breathing exercise would help more?"),
        ]
        self.assertEqual("breathing", detect_exercise_confirmation("ok", recent).category)

    def test_offer_outside_lookback_is_ignored(self) -> None:
        recent = [
            _assistant("Would you like to try a gratitude exercise?"),
            _assistant("How was your day?"),
            _assistant("Tell me about it."),
            _assistant("I see."),
        ]
        self.assertIsNone(detect_exercise_confirmation("sure", recent))

    def test_no_positive_reply(self) -> None:
        recent = [_assistant("Would you like to try a breathing exercise?")]
        self.assertIsNone(detect_exercise_confirmation("Not now", recent))


class StructuredExerciseOfferTests(unittest.TestCase):
    def test_show_card_with_known_type(self) -> None:
        self.assertEqual("mindfulness", structured_exercise_offer("showExerciseCard", "body-scan").category)

    def test_other_actions_are_ignored(self) -> None:
        self.assertIsNone(structured_exercise_offer("none", "breathing"))
        self.assertIsNone(structured_exercise_offer("showExerciseCard", None))
        self.assertIsNone(structured_exercise_offer("showExerciseCard", "juggling"))


if __name__ == "__main__":
    unittest.main()
