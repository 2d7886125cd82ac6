"""Tests for lamp_monitor/actuator.py - subprocess actuator and action validation."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest
from conftest import RecordingActuator

from lamp_monitor.actuator import CommandActuator, DryRunActuator, validate_actions
from lamp_monitor.errors import ActuatorError


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestCommandActuator:
    @pytest.fixture
    def actuator(self):
        return CommandActuator(["shortcuts", "run", "{action}"], ["shortcuts", "list"], timeout=5)

    def test_build_command_substitutes_action(self, actuator):
        assert actuator.build_command("MeetingON") == ["shortcuts", "run", "MeetingON"]

    def test_placeholder_inside_argument(self):
        actuator = CommandActuator(["ha", "--service=script.{action}"])

        assert actuator.build_command("lamp_on") == ["ha", "--service=script.lamp_on"]

    def test_run_success(self, actuator):
        with patch("lamp_monitor.actuator.subprocess.run", return_value=completed()) as mock_run:
            actuator.run("MeetingON")

        mock_run.assert_called_once_with(
            ["shortcuts", "run", "MeetingON"], capture_output=True, text=True, timeout=5
        )

    def test_run_nonzero_exit(self, actuator):
        with patch("lamp_monitor.actuator.subprocess.run", return_value=completed(1, stderr="no such shortcut\n")):
            with pytest.raises(ActuatorError) as exc_info:
                actuator.run("MeetingON")

        assert exc_info.value.action == "MeetingON"
        assert exc_info.value.returncode == 1
        assert "no such shortcut" in str(exc_info.value)

    def test_run_timeout(self, actuator):
        with patch(
            "lamp_monitor.actuator.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="shortcuts", timeout=5),
        ):
            with pytest.raises(ActuatorError, match="timed out"):
                actuator.run("MeetingON")

    def test_run_missing_binary(self, actuator):
        with patch("lamp_monitor.actuator.subprocess.run", side_effect=FileNotFoundError("shortcuts")):
            with pytest.raises(ActuatorError, match="could not run shortcuts"):
                actuator.run("MeetingON")

    def test_available_actions(self, actuator):
        with patch(
            "lamp_monitor.actuator.subprocess.run",
            return_value=completed(stdout="MeetingON\nMeetingOFF\n\n  MeetingSOON  \n"),
        ):
            assert actuator.available_actions() == ["MeetingON", "MeetingOFF", "MeetingSOON"]

    def test_available_actions_failure(self, actuator):
        with patch("lamp_monitor.actuator.subprocess.run", return_value=completed(1)):
            assert actuator.available_actions() is None

    def test_available_actions_without_list_command(self):
        actuator = CommandActuator(["run", "{action}"])

        with patch("lamp_monitor.actuator.subprocess.run") as mock_run:
            assert actuator.available_actions() is None
        mock_run.assert_not_called()


class TestDryRunActuator:
    def test_records_instead_of_running(self):
        actuator = DryRunActuator()

        with patch("lamp_monitor.actuator.subprocess.run") as mock_run:
            actuator.run("MeetingON")

        mock_run.assert_not_called()
        assert actuator.executed == ["MeetingON"]
        assert actuator.available_actions() is None


class TestValidateActions:
    def test_all_present(self):
        actuator = RecordingActuator(actions=["MeetingON", "MeetingOFF", "MeetingSOON", "Other"])

        assert validate_actions(actuator, ["MeetingON", "MeetingOFF", "MeetingSOON"]) == []

    def test_reports_missing(self):
        actuator = RecordingActuator(actions=["MeetingON"])

        assert validate_actions(actuator, ["MeetingON", "MeetingOFF", "MeetingSOON"]) == [
            "MeetingOFF",
            "MeetingSOON",
        ]

    def test_unlistable_actuator_passes(self):
        actuator = MagicMock()
        actuator.available_actions.return_value = None

        assert validate_actions(actuator, ["MeetingON"]) == []
