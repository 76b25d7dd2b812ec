"""Shared fixtures for the MACI engine test suite."""

import sys
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import EngineConfig, MaxValues, TreeDepths  # noqa: E402
from domainobjs import Keypair, VoteCommand  # noqa: E402
from engine import MaciState  # noqa: E402

POLL_END_TIMESTAMP = 1_700_000_000


@pytest.fixture
def engine_config():
    return EngineConfig(state_tree_depth=4, deactivation_queue_size=5)


@pytest.fixture
def coordinator_keypair():
    return Keypair()


@pytest.fixture
def maci_state(engine_config):
    return MaciState(engine_config)


@pytest.fixture
def tree_depths():
    return TreeDepths(
        int_state_tree_depth=1,
        message_tree_depth=2,
        message_tree_sub_depth=1,
        vote_option_tree_depth=2,
    )


@pytest.fixture
def max_values():
    return MaxValues(max_users=25, max_messages=25, max_vote_options=25)


@pytest.fixture
def deploy_poll(maci_state, tree_depths, max_values, coordinator_keypair):
    """Deploy a poll on the shared state engine and return it"""
    def _deploy(message_batch_size: int = 5):
        poll_id = maci_state.deploy_poll(
            POLL_END_TIMESTAMP, max_values, tree_depths, message_batch_size, coordinator_keypair)
        return maci_state.polls[poll_id]
    return _deploy


@pytest.fixture
def make_vote(coordinator_keypair):
    """Build an encrypted, signed vote message and its ephemeral public key"""
    def _make(user_keypair, state_index, vote_option_index, new_vote_weight, nonce,
              poll_id=0, new_pub_key=None, signer=None):
        command = VoteCommand(
            state_index=state_index,
            new_pub_key=new_pub_key or user_keypair.pub_key,
            vote_option_index=vote_option_index,
            new_vote_weight=new_vote_weight,
            nonce=nonce,
            poll_id=poll_id,
        )
        signature = command.sign((signer or user_keypair).priv_key)
        ecdh_keypair = Keypair()
        shared_key = Keypair.gen_ecdh_shared_key(ecdh_keypair.priv_key, coordinator_keypair.pub_key)
        return command.encrypt(signature, shared_key), ecdh_keypair.pub_key
    return _make
