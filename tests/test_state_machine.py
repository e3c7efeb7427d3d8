import pytest
from app.services.state_machine import (
    ChatbotStep,
    InvalidTransitionError,
    can_transition,
    is_active,
    parse_step,
    transition,
)


class TestValidTransitions:
    def test_menu_to_awaiting_procedure(self):
        result = transition(ChatbotStep.MENU, ChatbotStep.AWAITING_PROCEDURE)
        assert result == ChatbotStep.AWAITING_PROCEDURE

    def test_menu_to_done(self):
        assert transition(ChatbotStep.MENU, ChatbotStep.DONE) == ChatbotStep.DONE

    def test_menu_repeats_on_unknown_option(self):
        assert transition(ChatbotStep.MENU, ChatbotStep.MENU) == ChatbotStep.MENU

    def test_awaiting_procedure_to_done(self):
        assert transition(ChatbotStep.AWAITING_PROCEDURE, ChatbotStep.DONE) == ChatbotStep.DONE


class TestInvalidTransitions:
    def test_done_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            transition(ChatbotStep.DONE, ChatbotStep.MENU)

    def test_awaiting_procedure_cannot_go_back_to_menu(self):
        with pytest.raises(InvalidTransitionError):
            transition(ChatbotStep.AWAITING_PROCEDURE, ChatbotStep.MENU)

    def test_error_message_names_both_steps(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(ChatbotStep.DONE, ChatbotStep.AWAITING_PROCEDURE)
        assert "done -> awaiting_procedure" in str(exc_info.value)


class TestCanTransition:
    def test_valid_returns_true(self):
        assert can_transition(ChatbotStep.MENU, ChatbotStep.DONE) is True

    def test_invalid_returns_false(self):
        assert can_transition(ChatbotStep.DONE, ChatbotStep.DONE) is False


class TestParseStep:
    def test_known_value(self):
        assert parse_step("awaiting_procedure") == ChatbotStep.AWAITING_PROCEDURE

    def test_empty_value_means_no_step(self):
        assert parse_step(None) is None
        assert parse_step("") is None

    def test_unknown_value_means_no_step(self):
        assert parse_step("legacy") is None


class TestIsActive:
    def test_menu_and_awaiting_are_active(self):
        assert is_active(ChatbotStep.MENU) is True
        assert is_active(ChatbotStep.AWAITING_PROCEDURE) is True

    def test_done_and_missing_are_inactive(self):
        assert is_active(ChatbotStep.DONE) is False
        assert is_active(None) is False
