"""
Tests for the termination guard.
Exit requests become StatusSignals; stream and policy replacement is refused.
"""

import threading
import types

import pytest

from toolrunner.exceptions import PolicyViolation, StatusSignal
from toolrunner.exec import OutputCapture, RestrictedAction, TerminationGuard


@pytest.fixture
def capture(fake_system):
    capture = OutputCapture(fake_system)
    capture.install()
    return capture


@pytest.fixture
def guard(capture, fake_system, fake_process):
    guard = TerminationGuard(capture, system=fake_system, process=fake_process)
    guard.install()
    yield guard
    if guard.installed:
        guard.uninstall()


class TestStatusSignal:
    """Test the exit request value."""

    @pytest.mark.parametrize("requested,expected", [
        (None, 0),
        (0, 0),
        (3, 3),
        (-1, -1),
        (True, 1),
        (2 ** 40, 2 ** 40),
    ])
    def test_code_normalization(self, requested, expected):
        """Requested values map to codes the way sys.exit does."""
        signal = StatusSignal(requested)

        assert signal.code == expected
        assert signal.message is None

    def test_message_request_means_failure(self):
        """A non-integer request keeps the text and reports code 1."""
        signal = StatusSignal("fatal: bad input")

        assert signal.code == 1
        assert signal.message == "fatal: bad input"

    def test_code_is_read_only(self):
        """The signal can't be altered after construction."""
        signal = StatusSignal(4)

        with pytest.raises(AttributeError):
            signal.code = 0
        with pytest.raises(AttributeError):
            signal.message = "changed"
        assert signal.code == 4

    def test_is_system_exit_but_not_exception(self):
        """Guests' ``except Exception`` blocks don't swallow it."""
        signal = StatusSignal(1)

        assert isinstance(signal, SystemExit)
        assert not isinstance(signal, Exception)
        assert not isinstance(signal, PolicyViolation)


class TestInstallation:
    """Test install order and teardown."""

    def test_requires_output_capture_first(self, fake_system, fake_process):
        """The guard refuses to install before output capture."""
        capture = OutputCapture(fake_system)
        guard = TerminationGuard(capture, system=fake_system, process=fake_process)

        with pytest.raises(RuntimeError, match="output capture"):
            guard.install()
        assert guard.installed is False

    def test_second_install_is_violation(self, guard):
        """A guard can't be installed twice."""
        with pytest.raises(PolicyViolation) as exc_info:
            guard.install()

        assert exc_info.value.action == RestrictedAction.REPLACE_TERMINATION_POLICY

    def test_another_guard_cannot_replace_it(self, guard, capture, fake_system):
        """A second guard on the same module is refused."""
        intruder = TerminationGuard(capture, system=fake_system, process=None)

        with pytest.raises(PolicyViolation):
            intruder.install()
        assert fake_system.exit == guard.intercept_termination

    def test_uninstall_restores_exit_functions(self, capture, fake_system, fake_process):
        """Teardown restores the original exit hooks and module class."""
        original_exit = fake_system.exit
        original_exit_now = fake_process._exit
        guard = TerminationGuard(capture, system=fake_system, process=fake_process)
        guard.install()

        guard.uninstall()

        assert fake_system.exit is original_exit
        assert fake_process._exit is original_exit_now
        assert type(fake_system) is types.ModuleType
        fake_system.stdout = None

    def test_process_module_is_optional(self, capture, fake_system, fake_process):
        """With process=None, _exit is left alone."""
        original_exit_now = fake_process._exit
        guard = TerminationGuard(capture, system=fake_system, process=None)
        guard.install()
        try:
            assert fake_process._exit is original_exit_now
        finally:
            guard.uninstall()


class TestTerminationInterception:
    """Every exit request raises a StatusSignal."""

    @pytest.mark.parametrize("code", [0, 1, 2, -1, 127, 255, 256, 2 ** 31, 10 ** 12])
    def test_exit_raises_status_signal(self, guard, fake_system, code):
        """sys.exit(N) unwinds with code N instead of ending the process."""
        with pytest.raises(StatusSignal) as exc_info:
            fake_system.exit(code)

        assert exc_info.value.code == code

    def test_exit_without_code(self, guard, fake_system):
        """sys.exit() means success."""
        with pytest.raises(StatusSignal) as exc_info:
            fake_system.exit()

        assert exc_info.value.code == 0

    def test_process_exit_is_intercepted(self, guard, fake_process):
        """os._exit(N) is intercepted too."""
        with pytest.raises(StatusSignal) as exc_info:
            fake_process._exit(9)

        assert exc_info.value.code == 9

    def test_signal_unwinds_through_guest_frames(self, guard, fake_system):
        """The signal propagates through arbitrarily deep guest calls."""
        def deep(level):
            if level == 0:
                fake_system.exit(42)
            deep(level - 1)

        with pytest.raises(StatusSignal) as exc_info:
            deep(50)

        assert exc_info.value.code == 42


class TestPolicyEnforcement:
    """Replacing streams or the exit policy raises PolicyViolation."""

    def test_replacing_stdout_is_refused(self, guard, capture, fake_system):
        """Assigning sys.stdout raises and leaves the capture stream in place."""
        with pytest.raises(PolicyViolation) as exc_info:
            fake_system.stdout = object()

        assert exc_info.value.action == RestrictedAction.REPLACE_OUTPUT_STREAMS
        assert not isinstance(exc_info.value, SystemExit)
        assert fake_system.stdout is capture.out.stream

    def test_replacing_stderr_is_refused(self, guard, capture, fake_system):
        with pytest.raises(PolicyViolation):
            fake_system.stderr = None

        assert fake_system.stderr is capture.err.stream

    def test_reinstalling_capture_is_refused(self, guard, fake_system):
        """A second OutputCapture can't take over the streams."""
        other = OutputCapture(fake_system)

        with pytest.raises(PolicyViolation) as exc_info:
            other.install()

        assert exc_info.value.action == RestrictedAction.REPLACE_OUTPUT_STREAMS

    def test_same_capture_install_is_refused(self, guard, capture):
        """Even the installed capture can't reinstall once guarded."""
        with pytest.raises(PolicyViolation):
            capture.install()

    @pytest.mark.parametrize("attribute", ["exit", "__class__"])
    def test_replacing_termination_policy_is_refused(self, guard, fake_system, attribute):
        """The exit hook and the guarded module class are locked."""
        with pytest.raises(PolicyViolation) as exc_info:
            setattr(fake_system, attribute, types.ModuleType)

        assert exc_info.value.action == RestrictedAction.REPLACE_TERMINATION_POLICY
        assert fake_system.exit == guard.intercept_termination

    def test_replacing_process_exit_is_refused(self, guard, fake_process):
        with pytest.raises(PolicyViolation):
            fake_process._exit = lambda code: None

    def test_deleting_protected_attribute_is_refused(self, guard, fake_system):
        with pytest.raises(PolicyViolation):
            del fake_system.exit

        assert fake_system.exit == guard.intercept_termination

    def test_unprotected_attributes_stay_writable(self, guard, fake_system):
        """Only the streams and exit hooks are locked."""
        fake_system.argv = ["tool", "--flag"]
        del fake_system.argv

        assert not hasattr(fake_system, "argv")

    def test_violations_are_recorded(self, guard, fake_system):
        """Each violation is kept, even if the caller swallows it."""
        with guard.watch() as violations:
            try:
                fake_system.stdout = None
            except PolicyViolation:
                pass

        assert len(violations) == 1
        assert violations[0].action == RestrictedAction.REPLACE_OUTPUT_STREAMS

    def test_violations_on_other_threads_are_not_recorded(self, guard, fake_system):
        """A watch only sees violations raised on its own thread."""
        def escape():
            try:
                fake_system.stdout = None
            except PolicyViolation:
                pass

        with guard.watch() as violations:
            worker = threading.Thread(target=escape)
            worker.start()
            worker.join()

        assert violations == []

    def test_nested_watch_restores_outer(self, guard, fake_system):
        with guard.watch() as outer:
            with guard.watch() as inner:
                pass
            with pytest.raises(PolicyViolation):
                fake_system.exit = None

        assert inner == []
        assert len(outer) == 1


class TestVerify:
    """verify() catches replacements that bypass attribute assignment."""

    def test_clean_state_passes(self, guard):
        with guard.watch() as violations:
            guard.verify()

        assert violations == []

    def test_dict_write_is_detected_and_reverted(self, guard, capture, fake_system):
        """Writing through __dict__ is caught and undone."""
        fake_system.__dict__["stdout"] = object()

        with pytest.raises(PolicyViolation) as exc_info:
            guard.verify()

        assert exc_info.value.action == RestrictedAction.REPLACE_OUTPUT_STREAMS
        assert fake_system.stdout is capture.out.stream

    def test_class_reset_is_detected_and_reverted(self, guard, fake_system):
        """Restoring the plain module class through object.__setattr__ is caught."""
        object.__setattr__(fake_system, "__class__", types.ModuleType)

        with pytest.raises(PolicyViolation) as exc_info:
            guard.verify()

        assert exc_info.value.action == RestrictedAction.REPLACE_TERMINATION_POLICY
        with pytest.raises(PolicyViolation):
            fake_system.stdout = None

    def test_exit_hook_restored(self, guard, fake_process):
        fake_process.__dict__["_exit"] = print

        with pytest.raises(PolicyViolation):
            guard.verify()

        assert fake_process._exit == guard.intercept_termination
