# tests/agents/test_transfer.py
import pytest

from agents.registry import build_agents
from common.base_agent import ALREADY_VERIFIED_MESSAGE
from common.envelope import transfer_to
from common.metadata_store import MetadataStore
from common.models import AgentName, FlowContext
from common.transfer import TransferCoordinator
from common.utils import CONFLICT_ERROR, CONFLICT_MESSAGE

from conftest import make_metadata


@pytest.fixture
def agents():
    return build_agents()


@pytest.fixture
def coordinator(agents, store):
    return TransferCoordinator(agents, store)


def test_accepted_transfer_merges_fields_and_activates(coordinator, agents, store):
    before = store.snapshot()
    result = transfer_to(
        AgentName.scheduling,
        silent=True,
        property_id_to_schedule="P",
        property_name="Skyline Towers",
        came_from="discovery",
    )
    outcome = coordinator.transfer(result)

    assert outcome.accepted is True
    assert outcome.source == AgentName.discovery
    assert outcome.destination == AgentName.scheduling
    assert outcome.message is None
    assert "Skyline Towers" in outcome.instructions
    assert outcome.entry_trigger and "Skyline Towers" in outcome.entry_trigger
    assert agents.active_name == AgentName.scheduling

    after = store.snapshot()
    for key, value in before.items():
        if key not in ("property_id_to_schedule", "property_name", "came_from"):
            assert after[key] == value, key
    assert after["property_id_to_schedule"] == "P"
    assert after["came_from"] == "discovery"


def test_non_silent_transfer_keeps_message(coordinator):
    outcome = coordinator.transfer(transfer_to(AgentName.verification, silent=False, message="One moment."))
    assert outcome.accepted and outcome.silent is False
    assert outcome.message == "One moment."


@pytest.mark.parametrize("destination", ["discovery", "billing", ""])
def test_self_and_unknown_destinations_are_refused(coordinator, agents, destination):
    outcome = coordinator.transfer(transfer_to(destination))
    assert outcome.accepted is False
    assert outcome.refusal.success is False
    assert agents.active_name == AgentName.discovery


def test_verification_refused_when_verified(coordinator, agents, store):
    store.update({"is_verified": True})
    outcome = coordinator.transfer(transfer_to(AgentName.verification, flow_context="scheduling"))
    assert outcome.accepted is False
    assert outcome.refusal.message == ALREADY_VERIFIED_MESSAGE
    assert agents.active_name == AgentName.discovery
    assert store.metadata.flow_context is None


def test_identifier_conflict_fails_closed(agents):
    store = MetadataStore(make_metadata(tenant_id=None))
    coordinator = TransferCoordinator(agents, store)
    outcome = coordinator.transfer(transfer_to(AgentName.verification, tenant_id="o1", came_from="discovery"))
    assert outcome.accepted is False
    assert outcome.refusal.error == CONFLICT_ERROR
    assert outcome.refusal.message == CONFLICT_MESSAGE
    assert store.metadata.tenant_id is None
    assert store.metadata.came_from is None
    assert agents.active_name == AgentName.discovery


def test_pending_question_surfaces_only_on_discovery_when_verified(agents, store):
    agents.activate(AgentName.verification)
    store.update({"pending_question": "What is the price?", "flow_context": "from_question_auth"})
    coordinator = TransferCoordinator(agents, store)

    outcome = coordinator.transfer(transfer_to(AgentName.discovery, is_verified=True,
                                               flow_context=FlowContext.from_question_auth.value))
    assert outcome.accepted
    assert outcome.pending_question == "What is the price?"
    assert outcome.entry_trigger is None


def test_pending_question_ignored_while_unverified(agents, store):
    agents.activate(AgentName.verification)
    store.update({"pending_question": "What is the price?"})
    outcome = TransferCoordinator(agents, store).transfer(transfer_to(AgentName.discovery))
    assert outcome.accepted
    assert outcome.pending_question is None


def test_language_defaults_after_transfer(agents):
    store = MetadataStore(make_metadata(language=""))
    TransferCoordinator(agents, store, default_language="English").transfer(transfer_to(AgentName.scheduling))
    assert store.metadata.language == "English"
