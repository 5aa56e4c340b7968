"""Unit tests for dispatcher module."""

import threading
from unittest.mock import Mock

import pytest

from azrdp.azure_cli_executor import AzureCLIError
from azrdp.config_manager import AzrdpConfig
from azrdp.credential_store import VMRecord
from azrdp.dispatcher import CommandDispatcher, parse_command
from azrdp.follow_up import FollowUpScheduler
from azrdp.vm_lifecycle import DeletionResult

OWNER = 42
STRANGER = 7
CHAT = 1000


class Outbox:
    """Collects replies sent by the dispatcher."""

    def __init__(self) -> None:
        self.messages: list[tuple[int, str]] = []
        self._lock = threading.Lock()

    def __call__(self, chat_id, text):
        with self._lock:
            self.messages.append((chat_id, text))

    @property
    def last(self) -> str:
        return self.messages[-1][1]

    def texts(self) -> list[str]:
        return [text for _, text in self.messages]


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def provisioner():
    mock = Mock()
    mock.create_vm.return_value = VMRecord(username="azureuser", password="Secr3t!pass12")
    return mock


@pytest.fixture
def lifecycle():
    mock = Mock()
    mock.delete_vm.return_value = DeletionResult(
        vm_name="vm1",
        success=True,
        message="VM vm1 and all associated resources deleted successfully",
        resources_deleted=["VM: vm1", "NIC: vm1-nic"],
    )
    return mock


@pytest.fixture
def control():
    mock = Mock()
    mock.get_ip.return_value = "20.1.2.3"
    return mock


@pytest.fixture
def dispatcher(store, provisioner, lifecycle, control, outbox):
    config = AzrdpConfig(resource_group="rg", location="eastus", owner_id=OWNER)
    dispatcher = CommandDispatcher(
        store=store,
        provisioner=provisioner,
        lifecycle=lifecycle,
        control=control,
        config=config,
        send=outbox,
        scheduler=FollowUpScheduler(),
        start_follow_up_delay=0,
        stop_follow_up_delay=0,
    )
    yield dispatcher
    dispatcher.close()


class TestParseCommand:
    """Test slash-command parsing."""

    def test_with_argument(self):
        command = parse_command("/create my-vm")
        assert command.name == "create"
        assert command.argument == "my-vm"

    def test_without_argument(self):
        command = parse_command("/list")
        assert command.name == "list"
        assert command.argument is None

    def test_bot_suffix_dropped(self):
        assert parse_command("/get@rdp_bot vm1").name == "get"

    @pytest.mark.parametrize("text", [None, "", "hello", "/"])
    def test_not_a_command(self, text):
        assert parse_command(text) is None


class TestAuthorization:
    """Only the owner may run privileged commands."""

    def test_help_is_public(self, dispatcher, outbox):
        dispatcher.handle(STRANGER, CHAT, "/help")
        assert "/create" in outbox.last
        assert "/delete" in outbox.last

    def test_start_is_public(self, dispatcher, outbox):
        dispatcher.handle(STRANGER, CHAT, "/start")
        assert "Welcome" in outbox.last

    @pytest.mark.parametrize("text", ["/create vm1", "/list", "/get vm1", "/delete_confirm vm1"])
    def test_privileged_commands_rejected(self, dispatcher, outbox, provisioner, lifecycle, text):
        assert dispatcher.handle(STRANGER, CHAT, text) is None

        assert "Unauthorized" in outbox.last
        provisioner.create_vm.assert_not_called()
        lifecycle.delete_vm.assert_not_called()

    def test_no_owner_configured_rejects_everyone(self, dispatcher, outbox):
        dispatcher.owner_id = None
        dispatcher.handle(OWNER, CHAT, "/list")
        assert "Unauthorized" in outbox.last

    def test_unknown_command(self, dispatcher, outbox):
        dispatcher.handle(OWNER, CHAT, "/frobnicate")
        assert "Unknown command" in outbox.last

    def test_plain_text_ignored(self, dispatcher, outbox):
        assert dispatcher.handle(OWNER, CHAT, "hello there") is None
        assert outbox.messages == []


class TestCreateAndQuery:
    """Test /create, /list, /get, /forget."""

    def test_create_saves_credentials(self, dispatcher, outbox, store, provisioner):
        dispatcher.handle(OWNER, CHAT, "/create vm1")

        provisioner.create_vm.assert_called_once_with("vm1", "rg", "eastus", "azureuser")
        assert store.get("vm1") == VMRecord(username="azureuser", password="Secr3t!pass12")
        assert "RDP Created Successfully" in outbox.last
        assert "20.1.2.3" in outbox.last
        assert "Secr3t!pass12" in outbox.last

    def test_create_failure_reported(self, dispatcher, outbox, store, provisioner):
        provisioner.create_vm.side_effect = AzureCLIError("QuotaExceeded")

        dispatcher.handle(OWNER, CHAT, "/create vm1")

        assert "Failed to create RDP" in outbox.last
        assert "QuotaExceeded" in outbox.last
        assert store.get("vm1") is None

    def test_create_keeps_credentials_when_ip_lookup_fails(self, dispatcher, outbox, store, control):
        control.get_ip.side_effect = AzureCLIError("not ready")

        dispatcher.handle(OWNER, CHAT, "/create vm1")

        assert store.get("vm1") is not None
        assert "unavailable" in outbox.last

    def test_create_requires_name(self, dispatcher, outbox, provisioner):
        dispatcher.handle(OWNER, CHAT, "/create")
        assert "Usage: /create <name>" in outbox.last
        provisioner.create_vm.assert_not_called()

    def test_list_empty(self, dispatcher, outbox):
        dispatcher.handle(OWNER, CHAT, "/list")
        assert "No VMs saved" in outbox.last

    def test_list_entries(self, dispatcher, outbox, store):
        store.save("vm1", VMRecord(username="u1", password="p"))
        store.save("vm2", VMRecord(username="u2", password="p"))

        dispatcher.handle(OWNER, CHAT, "/list")

        assert "vm1 - u1\nvm2 - u2" in outbox.last

    def test_get_unknown_vm(self, dispatcher, outbox, control):
        dispatcher.handle(OWNER, CHAT, "/get ghost")

        assert "VM not found: ghost" in outbox.last
        control.get_ip.assert_not_called()

    def test_get_known_vm(self, dispatcher, outbox, store):
        store.save("vm1", VMRecord(username="u1", password="pw"))

        dispatcher.handle(OWNER, CHAT, "/get vm1")

        assert "20.1.2.3" in outbox.last
        assert "u1" in outbox.last
        assert "pw" in outbox.last

    def test_get_vm_missing_on_azure(self, dispatcher, outbox, store, control):
        store.save("vm1", VMRecord(username="u1", password="pw"))
        control.get_ip.side_effect = AzureCLIError("ResourceNotFound")

        dispatcher.handle(OWNER, CHAT, "/get vm1")

        assert "may not be active on Azure" in outbox.last

    def test_forget(self, dispatcher, outbox, store):
        store.save("vm1", VMRecord(username="u1", password="pw"))

        dispatcher.handle(OWNER, CHAT, "/forget vm1")
        assert store.get("vm1") is None
        assert "Removed" in outbox.last

        dispatcher.handle(OWNER, CHAT, "/forget vm1")
        assert "No saved credentials" in outbox.last


class TestMissingResourceGroup:
    """Commands that reach Azure need a configured resource group."""

    @pytest.fixture(autouse=True)
    def no_resource_group(self, dispatcher):
        dispatcher.config.resource_group = None

    def test_create_refused(self, dispatcher, outbox, provisioner):
        dispatcher.handle(OWNER, CHAT, "/create vm1")

        assert "No resource group configured" in outbox.last
        provisioner.create_vm.assert_not_called()

    def test_get_reports_config_problem(self, dispatcher, outbox, store, control):
        store.save("vm1", VMRecord(username="u1", password="pw"))

        dispatcher.handle(OWNER, CHAT, "/get vm1")

        assert "No resource group configured" in outbox.last
        assert "may not be active" not in outbox.last
        control.get_ip.assert_not_called()

    @pytest.mark.parametrize("text", ["/startvm vm1", "/stopvm vm1", "/delete_confirm vm1"])
    def test_nothing_started(self, dispatcher, outbox, control, lifecycle, text):
        assert dispatcher.handle(OWNER, CHAT, text) is None

        assert "No resource group configured" in outbox.last
        control.start_vm.assert_not_called()
        control.stop_vm.assert_not_called()
        lifecycle.delete_vm.assert_not_called()

    def test_list_still_works(self, dispatcher, outbox):
        dispatcher.handle(OWNER, CHAT, "/list")
        assert "Saved VMs" in outbox.last


class TestStartStop:
    """Test /startvm and /stopvm follow-ups."""

    def test_startvm_reports_ip_in_follow_up(self, dispatcher, outbox, control):
        handle = dispatcher.handle(OWNER, CHAT, "/startvm vm1")

        assert handle.wait(timeout=5)
        control.start_vm.assert_called_once_with("vm1", "rg")
        assert "Starting VM" in outbox.texts()[0]
        assert "started successfully" in outbox.last
        assert "20.1.2.3" in outbox.last

    def test_startvm_follow_up_without_ip(self, dispatcher, outbox, control):
        control.get_ip.side_effect = AzureCLIError("no ip yet")

        handle = dispatcher.handle(OWNER, CHAT, "/startvm vm1")

        assert handle.wait(timeout=5)
        assert "couldn't retrieve IP" in outbox.last

    def test_startvm_failure_has_no_follow_up(self, dispatcher, outbox, control):
        control.start_vm.side_effect = AzureCLIError("VMNotFound")

        assert dispatcher.handle(OWNER, CHAT, "/startvm vm1") is None
        assert "Failed to start VM" in outbox.last

    def test_stopvm_follow_up(self, dispatcher, outbox, control):
        handle = dispatcher.handle(OWNER, CHAT, "/stopvm vm1")

        assert handle.wait(timeout=5)
        control.stop_vm.assert_called_once_with("vm1", "rg")
        assert "stopped successfully" in outbox.last

    def test_pending_follow_up_cancelled_on_close(self, dispatcher, outbox):
        dispatcher.start_follow_up_delay = 60

        handle = dispatcher.handle(OWNER, CHAT, "/startvm vm1")
        dispatcher.close()

        assert handle.cancelled
        assert not any("started successfully" in text for text in outbox.texts())


class TestDelete:
    """Test the confirmation and background deletion flow."""

    def test_delete_asks_for_confirmation(self, dispatcher, outbox, lifecycle):
        dispatcher.handle(OWNER, CHAT, "/delete vm1")

        assert "Are you sure" in outbox.last
        assert "/delete_confirm vm1" in outbox.last
        lifecycle.delete_vm.assert_not_called()

    def test_delete_cancel(self, dispatcher, outbox):
        dispatcher.handle(OWNER, CHAT, "/delete_cancel")
        assert "cancelled" in outbox.last

    def test_confirm_runs_in_background_and_removes_credentials(
        self, dispatcher, outbox, store, lifecycle
    ):
        store.save("vm1", VMRecord(username="u1", password="pw"))

        future = dispatcher.handle(OWNER, CHAT, "/delete_confirm vm1")
        result = future.result(timeout=5)

        assert result.success
        lifecycle.delete_vm.assert_called_once_with("vm1", "rg")
        assert store.get("vm1") is None
        assert "deleted successfully" in outbox.last
        assert "NIC: vm1-nic" in outbox.last

    def test_other_commands_answered_while_deleting(self, dispatcher, outbox, lifecycle):
        release = threading.Event()

        def slow_delete(name, rg):
            release.wait(5)
            return DeletionResult(vm_name=name, success=True, message="ok")

        lifecycle.delete_vm.side_effect = slow_delete

        future = dispatcher.handle(OWNER, CHAT, "/delete_confirm vm1")
        dispatcher.handle(OWNER, CHAT, "/list")

        assert "Saved VMs" in outbox.last
        assert not future.done()
        release.set()
        future.result(timeout=5)

    def test_duplicate_confirm_rejected_while_running(self, dispatcher, outbox, lifecycle):
        release = threading.Event()

        def slow_delete(name, rg):
            release.wait(5)
            return DeletionResult(vm_name=name, success=True, message="ok")

        lifecycle.delete_vm.side_effect = slow_delete

        first = dispatcher.handle(OWNER, CHAT, "/delete_confirm vm1")
        second = dispatcher.handle(OWNER, CHAT, "/delete_confirm vm1")

        assert second is None
        assert "already in progress" in outbox.last
        release.set()
        first.result(timeout=5)
        assert lifecycle.delete_vm.call_count == 1

    def test_failed_deletion_keeps_credentials(self, dispatcher, outbox, store, lifecycle):
        store.save("vm1", VMRecord(username="u1", password="pw"))
        lifecycle.delete_vm.return_value = DeletionResult(
            vm_name="vm1", success=False, message="Failed to delete VM: AuthorizationFailed"
        )

        dispatcher.handle(OWNER, CHAT, "/delete_confirm vm1").result(timeout=5)

        assert store.get("vm1") is not None
        assert "Failed to delete VM" in outbox.last

    def test_timeout_and_warnings_reported(self, dispatcher, outbox, lifecycle):
        lifecycle.delete_vm.return_value = DeletionResult(
            vm_name="vm1",
            success=True,
            message="ok",
            warnings=["Timeout reached while waiting for VM vm1 to be deleted", "Error deleting NIC x"],
            timed_out=True,
        )

        dispatcher.handle(OWNER, CHAT, "/delete_confirm vm1").result(timeout=5)

        assert "did not confirm" in outbox.last
        assert "2 cleanup warnings" in outbox.last
        assert "Error deleting NIC x" in outbox.last

    def test_unexpected_exception_becomes_failure(self, dispatcher, outbox, lifecycle):
        lifecycle.delete_vm.side_effect = RuntimeError("worker crashed")

        result = dispatcher.handle(OWNER, CHAT, "/delete_confirm vm1").result(timeout=5)

        assert result.success is False
        assert "worker crashed" in outbox.last
