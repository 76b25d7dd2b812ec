"""
State engine: signup registry, signup tree/queue and deployed polls.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from config import BatchSizes, EngineConfig, MaxValues, TreeDepths
from domainobjs import Keypair, PublicKey, StateLeaf
from trees import AccQueue, IncrementalTree
from utils.errors import InputValidationError, ProofPreconditionError, ProtocolViolation
from utils.utils import PerformanceMonitor
from zk import SNARK_FIELD_SIZE, hash5
from .constants import (
    STATE_TREE_ARITY,
    STATE_TREE_SUBDEPTH,
    blank_state_leaf,
    blank_state_leaf_hash,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessingToken:
    """Which poll, if any, currently holds the processing right"""
    poll_id: Optional[int] = None

    @property
    def is_idle(self) -> bool:
        return self.poll_id is None


IDLE = ProcessingToken()


@dataclass
class StateSnapshot:
    """Independently owned copy of the signup set"""
    state_leaves: List[StateLeaf]
    state_tree: IncrementalTree
    num_signups: int


class MaciState:
    """Registry of signups and polls for one MACI deployment"""

    def __init__(self, config: Optional[EngineConfig] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.config = config or EngineConfig()
        self.monitor = monitor
        self.state_tree_depth = self.config.state_tree_depth
        self.state_tree_arity = STATE_TREE_ARITY

        self.polls: List['Poll'] = []
        self.num_signups = 0
        self.processing = IDLE

        self.state_leaves: List[StateLeaf] = [blank_state_leaf()]
        self.state_tree = IncrementalTree(
            self.state_tree_depth, blank_state_leaf_hash(), STATE_TREE_ARITY, hash5)
        self.state_aq = AccQueue(STATE_TREE_SUBDEPTH, STATE_TREE_ARITY, blank_state_leaf_hash())

        self.state_tree.insert(blank_state_leaf_hash())
        self.state_aq.enqueue(blank_state_leaf_hash())

    def sign_up(self, pub_key: PublicKey, initial_voice_credit_balance: int, timestamp: int) -> int:
        """Register a signup and return its state index"""
        if not 0 <= initial_voice_credit_balance < SNARK_FIELD_SIZE:
            raise InputValidationError("voice credit balance must be a field element")
        if not 0 <= timestamp < SNARK_FIELD_SIZE:
            raise InputValidationError("timestamp must be a field element")
        if self.state_tree.next_index >= self.state_tree.capacity:
            raise InputValidationError("the state tree is full")

        leaf = StateLeaf(pub_key, initial_voice_credit_balance, timestamp)
        leaf_hash = leaf.hash()
        self.state_leaves.append(leaf)
        self.state_aq.enqueue(leaf_hash)
        index = self.state_tree.insert(leaf_hash)
        self.num_signups += 1

        logger.info(f"Signup #{self.num_signups} registered at state index {index}")
        return index

    def deploy_poll(self, poll_end_timestamp: int, max_values: MaxValues,
                    tree_depths: TreeDepths, message_batch_size: int,
                    coordinator_keypair: Keypair) -> int:
        """Deploy a poll and return its id"""
        from .poll import Poll

        batch_size = self.state_tree_arity ** tree_depths.int_state_tree_depth
        batch_sizes = BatchSizes(
            message_batch_size=message_batch_size,
            tally_batch_size=batch_size,
            subsidy_batch_size=batch_size,
        )

        poll = Poll(
            poll_end_timestamp,
            coordinator_keypair,
            tree_depths,
            batch_sizes,
            max_values,
            self,
            len(self.polls),
        )
        self.polls.append(poll)
        logger.info(f"Deployed poll {poll.poll_id} ending at {poll_end_timestamp}")
        return poll.poll_id

    def deploy_poll_from_config(self, poll_end_timestamp: int, coordinator_keypair: Keypair) -> int:
        return self.deploy_poll(
            poll_end_timestamp,
            self.config.max_values,
            self.config.tree_depths,
            self.config.message_batch_size,
            coordinator_keypair,
        )

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            state_leaves=[leaf.copy() for leaf in self.state_leaves],
            state_tree=self.state_tree.copy(),
            num_signups=self.num_signups,
        )

    # ------------------------------------------------------------------
    # processing token
    # ------------------------------------------------------------------

    def begin_processing(self, poll_id: int):
        """Claim the processing token for a poll; idempotent for the holder"""
        if not self.processing.is_idle and self.processing.poll_id != poll_id:
            raise ProtocolViolation(
                f"poll {self.processing.poll_id} is being processed, cannot process poll {poll_id}")
        if self.processing.is_idle:
            logger.info(f"Poll {poll_id} acquired the processing token")
        self.processing = ProcessingToken(poll_id)

    def finish_processing(self, poll_id: int):
        if self.processing.poll_id != poll_id:
            raise ProtocolViolation(f"poll {poll_id} does not hold the processing token")
        self.processing = IDLE
        logger.info(f"Poll {poll_id} released the processing token")

    def merge_state_aq(self, num_sr_queue_ops: int = 0) -> bool:
        """
        Merge the signup queue; returns True once the main root is available.
        The merged root must equal the signup tree root.
        """
        if not self.state_aq.sub_roots_merged:
            self.state_aq.merge_sub_roots(num_sr_queue_ops)
            if not self.state_aq.sub_roots_merged:
                return False

        root = self.state_aq.merge(self.state_tree_depth)
        if root != self.state_tree.root:
            raise ProofPreconditionError("the signup queue root does not match the state tree")
        return True

    def copy(self) -> 'MaciState':
        copied = MaciState.__new__(MaciState)
        copied.config = self.config
        copied.monitor = self.monitor
        copied.state_tree_depth = self.state_tree_depth
        copied.state_tree_arity = self.state_tree_arity
        copied.num_signups = self.num_signups
        copied.processing = self.processing
        copied.state_leaves = [leaf.copy() for leaf in self.state_leaves]
        copied.state_tree = self.state_tree.copy()
        copied.state_aq = self.state_aq.copy()
        copied.polls = [poll.copy(maci_state=copied) for poll in self.polls]
        return copied

    def __eq__(self, other):
        if not isinstance(other, MaciState):
            return NotImplemented
        return (self.state_tree_depth == other.state_tree_depth
                and self.num_signups == other.num_signups
                and self.state_leaves == other.state_leaves
                and self.state_tree.root == other.state_tree.root
                and self.processing == other.processing
                and self.polls == other.polls)
