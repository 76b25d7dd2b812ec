"""
Poll engine: message ingestion, reverse-order batch replay, key
deactivation, key generation and tallying for one voting round.

Every processing call emits a flat mapping of circuit inputs whose keys
are the signal names of the consuming circuit.
"""

import copy
import logging
import threading
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from config import BatchSizes, MaxValues, TreeDepths
from domainobjs import (
    Ballot,
    Command,
    DeactivatedKeyLeaf,
    KeyGenCommand,
    Keypair,
    Message,
    MessageType,
    PrivateKey,
    PublicKey,
    StateLeaf,
    TopupCommand,
    VoteCommand,
)
from trees import AccQueue, IncrementalTree, SparseMerkleTree
from utils.errors import (
    CommandRejected,
    DecryptionError,
    InputValidationError,
    ProofPreconditionError,
    ProtocolViolation,
)
from zk import (
    NOTHING_UP_MY_SLEEVE,
    SNARK_FIELD_SIZE,
    Point,
    Signature,
    elgamal_encrypt_bit,
    elgamal_rerandomize,
    gen_random_salt,
    hash2,
    hash3,
    hash4,
    hash5,
    hash_left_right,
    sha256_hash,
    validate_field_elements,
)
from .constants import (
    DEACT_KEYS_TREE_ARITY,
    DEACT_KEYS_TREE_DEPTH,
    DEACT_MESSAGE_INIT_HASH,
    MESSAGE_TREE_ARITY,
    STATE_TREE_ARITY,
    TOPUP_PAD_KEY,
    VOTE_OPTION_TREE_ARITY,
    blank_state_leaf,
)
from .packing import (
    gen_tally_result_commitment,
    pack_process_message_small_vals,
    pack_tally_votes_small_vals,
)

logger = logging.getLogger(__name__)

ZERO_PUB_KEY = PublicKey((0, 0))


class ProcessingStatus(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SEALED = "sealed"


@dataclass
class DeactivatedKeyEvent:
    key_hash: int
    c1: Point
    c2: Point


@dataclass
class NewKeyGenerationInputs:
    circuit_inputs: Dict[str, Any]
    enc_pub_key: PublicKey
    message: Message


@dataclass
class _BatchItem:
    """Pre-state material for one message slot of a batch"""
    state_leaf: List[int]
    state_leaf_path: List[List[int]]
    ballot: List[int]
    ballot_path: List[List[int]]
    vote_weight: int
    vote_weight_path: List[List[int]]
    nullifier_path: List[int]
    nullifier_flag: int


def _is_power_of(value: int, base: int) -> bool:
    if value < 1:
        return False
    while value % base == 0:
        value //= base
    return value == 1


class Poll:
    """A single voting round"""

    def __init__(self, poll_end_timestamp: int, coordinator_keypair: Keypair,
                 tree_depths: TreeDepths, batch_sizes: BatchSizes,
                 max_values: MaxValues, maci_state, poll_id: int):
        if not _is_power_of(batch_sizes.message_batch_size, MESSAGE_TREE_ARITY):
            raise InputValidationError("the message batch size must be a power of 5")
        if batch_sizes.message_batch_size > MESSAGE_TREE_ARITY ** tree_depths.message_tree_depth:
            raise InputValidationError("the message batch size exceeds the message tree capacity")
        if max_values.max_messages > MESSAGE_TREE_ARITY ** tree_depths.message_tree_depth:
            raise InputValidationError("max_messages exceeds the message tree capacity")
        if max_values.max_vote_options > VOTE_OPTION_TREE_ARITY ** tree_depths.vote_option_tree_depth:
            raise InputValidationError("max_vote_options exceeds the vote option tree capacity")

        self.poll_id = poll_id
        self.poll_end_timestamp = poll_end_timestamp
        self.coordinator_keypair = coordinator_keypair
        self.tree_depths = tree_depths
        self.batch_sizes = batch_sizes
        self.max_values = max_values
        self.maci_state = maci_state

        config = maci_state.config
        self.state_tree_depth = maci_state.state_tree_depth
        self.voice_credit_model = config.voice_credit_model
        self.deactivation_queue_size = config.deactivation_queue_size

        # message log
        self.messages: List[Message] = []
        self.commands: List[Command] = []
        self.enc_pub_keys: List[PublicKey] = []
        self.num_key_gens = 0
        self.message_aq = AccQueue(tree_depths.message_tree_sub_depth,
                                   MESSAGE_TREE_ARITY, NOTHING_UP_MY_SLEEVE)
        self.message_tree = IncrementalTree(tree_depths.message_tree_depth,
                                            NOTHING_UP_MY_SLEEVE, MESSAGE_TREE_ARITY, hash5)

        # key deactivation
        self.deactivation_messages: List[Message] = []
        self.deactivation_enc_pub_keys: List[PublicKey] = []
        self.deactivation_commands: List[VoteCommand] = []
        self.deactivation_signatures: List[Optional[Signature]] = []
        self.deactivated_keys_chain_hash = DEACT_MESSAGE_INIT_HASH
        self.deactivated_keys_tree = IncrementalTree(
            DEACT_KEYS_TREE_DEPTH, DEACT_MESSAGE_INIT_HASH, DEACT_KEYS_TREE_ARITY, hash5)
        self.deactivated_key_events: List[DeactivatedKeyEvent] = []
        self.num_deactivations_processed = 0

        # signup snapshot, taken on the first processing call
        self.state_copied = False
        self.state_leaves: List[StateLeaf] = []
        self.state_tree: Optional[IncrementalTree] = None
        self.num_signups = 0
        self.ballots: List[Ballot] = []
        self.ballot_tree: Optional[IncrementalTree] = None

        self.nullifiers_tree = SparseMerkleTree()
        self.nullifiers_tree.insert(0, 0)

        # message processing
        self.num_batches_processed = 0
        self.current_message_batch_index: Optional[int] = None
        self.sb_salts: Dict[int, int] = {}

        # tally
        self.num_batches_tallied = 0
        self.results: List[int] = [0] * max_values.max_vote_options
        self.per_vo_spent_voice_credits: List[int] = [0] * max_values.max_vote_options
        self.total_spent_voice_credits = 0
        self.result_root_salts: Dict[int, int] = {}
        self.per_vo_spent_voice_credits_root_salts: Dict[int, int] = {}
        self.spent_voice_credit_subtotal_salts: Dict[int, int] = {}

        # subsidy row / column batch indices
        self.rbi = 0
        self.cbi = 0

        self._lock = threading.RLock()

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _operation(self, name: str):
        monitor = self.maci_state.monitor
        if monitor is None:
            return nullcontext()
        return monitor.start_operation(name, poll_id=self.poll_id)

    def _ensure_snapshot(self):
        """Take the one-time copy of the signup set"""
        if self.state_copied:
            return

        snapshot = self.maci_state.snapshot()
        self.state_leaves = snapshot.state_leaves
        self.state_tree = snapshot.state_tree
        self.num_signups = snapshot.num_signups

        blank_ballot = Ballot.gen_blank_ballot(
            self.max_values.max_vote_options, self.tree_depths.vote_option_tree_depth)
        blank_ballot_hash = blank_ballot.hash()
        self.ballots = [blank_ballot.copy() for _ in self.state_leaves]
        self.ballot_tree = IncrementalTree.from_leaves(
            self.state_tree_depth, blank_ballot_hash, STATE_TREE_ARITY, hash5,
            [blank_ballot_hash] * len(self.ballots))

        self.state_copied = True
        logger.info(f"Poll {self.poll_id} copied {self.num_signups} signups from the state engine")

    def _vote_cost(self, weight: int) -> int:
        return weight * weight if self.voice_credit_model == "quadratic" else weight

    def _sb_commitment(self, salt: int) -> int:
        return hash4([self.state_tree.root, self.ballot_tree.root,
                      self.nullifiers_tree.root, salt])

    def _fresh_salt(self, previous: int) -> int:
        salt = gen_random_salt()
        while salt == previous:
            salt = gen_random_salt()
        return salt

    def _nullifier_path(self, siblings: List[int]) -> List[int]:
        if len(siblings) > self.state_tree_depth:
            raise ProofPreconditionError("nullifier tree path is deeper than the circuit supports")
        return list(siblings) + [0] * (self.state_tree_depth - len(siblings))

    def _check_ingestion(self, message: Message, enc_pub_key: PublicKey,
                         expected_type: MessageType, capacity_check: bool = True):
        if message.msg_type != expected_type:
            raise InputValidationError(
                f"expected a message of type {expected_type.name}, got {message.msg_type}")
        if not isinstance(enc_pub_key, PublicKey):
            raise InputValidationError("the encryption public key must be a PublicKey")
        validate_field_elements(message.data, "message data")
        if capacity_check:
            if self.num_batches_processed > 0:
                raise ProtocolViolation("cannot publish messages once processing has started")
            if self.num_batches_tallied > 0:
                raise ProtocolViolation("cannot publish messages once tallying has started")
            if self.message_aq.num_leaves != len(self.messages):
                raise ProtocolViolation("the message queue was padded for merging")
            if len(self.messages) >= self.max_values.max_messages:
                raise InputValidationError(f"poll {self.poll_id} accepts at most "
                                           f"{self.max_values.max_messages} messages")
            if self.message_tree.next_index >= self.message_tree.capacity:
                raise InputValidationError(f"the message tree of poll {self.poll_id} is full")

    def _append_message(self, message: Message, enc_pub_key: PublicKey, command: Command):
        leaf = message.hash(enc_pub_key)
        self.message_tree.insert(leaf)
        self.message_aq.enqueue(leaf)

        self.messages.append(message)
        self.enc_pub_keys.append(enc_pub_key)
        self.commands.append(command)

    # ========================================================================
    # MESSAGE INGESTION
    # ========================================================================

    def publish_message(self, message: Message, enc_pub_key: PublicKey):
        """Record a vote message; undecryptable messages are kept as placeholders"""
        with self._lock:
            self._check_ingestion(message, enc_pub_key, MessageType.VOTE)

            try:
                shared_key = Keypair.gen_ecdh_shared_key(
                    self.coordinator_keypair.priv_key, enc_pub_key)
                command, _ = VoteCommand.decrypt(message, shared_key)
            except DecryptionError as e:
                logger.debug(f"Poll {self.poll_id}: message {len(self.messages)} "
                             f"does not decrypt ({e}), storing a placeholder")
                command = VoteCommand.placeholder()

            self._append_message(message, enc_pub_key, command)

    def topup_message(self, message: Message):
        """Record a top-up; its data is (state index, amount) in the clear"""
        with self._lock:
            self._check_ingestion(message, TOPUP_PAD_KEY, MessageType.TOPUP)
            command = TopupCommand(message.data[0], message.data[1], self.poll_id)
            self._append_message(message, TOPUP_PAD_KEY, command)

    def generate_new_key(self, message: Message, enc_pub_key: PublicKey, new_state_index: int):
        """Record a key-generation message for the signup at new_state_index"""
        with self._lock:
            self._check_ingestion(message, enc_pub_key, MessageType.KEYGEN)
            validate_field_elements([new_state_index], "new state index")

            try:
                shared_key = Keypair.gen_ecdh_shared_key(
                    self.coordinator_keypair.priv_key, enc_pub_key)
                command = KeyGenCommand.decrypt(message, shared_key)
                command.new_state_index = new_state_index
                self.num_key_gens += 1
            except DecryptionError as e:
                logger.debug(f"Poll {self.poll_id}: key generation message does not decrypt ({e})")
                command = KeyGenCommand.placeholder()

            self._append_message(message, enc_pub_key, command)

    def deactivate_key(self, message: Message, enc_pub_key: PublicKey):
        """Record a key deactivation request (a signed vote-type command)"""
        with self._lock:
            self._check_ingestion(message, enc_pub_key, MessageType.VOTE, capacity_check=False)

            self.deactivation_messages.append(message)
            self.deactivation_enc_pub_keys.append(enc_pub_key)
            self.deactivated_keys_chain_hash = hash2(
                [self.deactivated_keys_chain_hash, message.hash(enc_pub_key)])

            try:
                shared_key = Keypair.gen_ecdh_shared_key(
                    self.coordinator_keypair.priv_key, enc_pub_key)
                command, signature = VoteCommand.decrypt(message, shared_key)
            except DecryptionError as e:
                logger.debug(f"Poll {self.poll_id}: deactivation message does not decrypt ({e})")
                command, signature = VoteCommand.placeholder(), None

            self.deactivation_commands.append(command)
            self.deactivation_signatures.append(signature)

    def process_deactivated_key_event(self, key_hash: int, c1: Point, c2: Point):
        """Mirror a deactivated key published on chain"""
        with self._lock:
            validate_field_elements([key_hash, *c1, *c2], "deactivated key event")
            self.deactivated_key_events.append(DeactivatedKeyEvent(key_hash, tuple(c1), tuple(c2)))

    # ========================================================================
    # MESSAGE QUEUE
    # ========================================================================

    def merge_message_aq_sub_roots(self, num_sr_queue_ops: int = 0):
        with self._lock:
            self.message_aq.merge_sub_roots(num_sr_queue_ops)

    def merge_message_aq(self) -> int:
        with self._lock:
            return self.message_aq.merge(self.tree_depths.message_tree_depth)

    def merge_all_messages(self) -> int:
        with self._lock:
            if not self.message_aq.sub_roots_merged:
                self.message_aq.merge_sub_roots(0)
            return self.message_aq.merge(self.tree_depths.message_tree_depth)

    def is_message_aq_merged(self) -> bool:
        depth = self.tree_depths.message_tree_depth
        return (self.message_aq.has_root(depth)
                and self.message_aq.get_root(depth) == self.message_tree.root)

    # ========================================================================
    # STATUS
    # ========================================================================

    def total_message_batches(self) -> int:
        batch_size = self.batch_sizes.message_batch_size
        return -(-len(self.messages) // batch_size)

    def has_unprocessed_messages(self) -> bool:
        return self.num_batches_processed < self.total_message_batches()

    def has_unprocessed_deactivations(self) -> bool:
        return self.num_deactivations_processed < len(self.deactivation_messages)

    def has_untallied_ballots(self) -> bool:
        num_ballots = len(self.ballots) if self.state_copied else self.maci_state.num_signups + 1
        return self.num_batches_tallied * self.batch_sizes.tally_batch_size < num_ballots

    def has_unfinished_subsidy_calculation(self) -> bool:
        num_ballots = len(self.ballots) if self.state_copied else self.maci_state.num_signups + 1
        batch_size = self.batch_sizes.subsidy_batch_size
        return self.rbi * batch_size < num_ballots and self.cbi * batch_size < num_ballots

    @property
    def processing_status(self) -> ProcessingStatus:
        if self.num_batches_processed == 0:
            return ProcessingStatus.NOT_STARTED
        if self.has_unprocessed_messages():
            return ProcessingStatus.IN_PROGRESS
        return ProcessingStatus.SEALED

    # ========================================================================
    # MESSAGE PROCESSING
    # ========================================================================

    def _message_row(self, index: int) -> List[int]:
        if index >= len(self.messages):
            return Message.padding().as_circuit_inputs() + [0]
        command = self.commands[index]
        new_state_index = command.new_state_index if isinstance(command, KeyGenCommand) else 0
        return self.messages[index].as_circuit_inputs() + [new_state_index]

    def _gen_process_messages_circuit_inputs_partial(self, index: int) -> Dict[str, Any]:
        batch_size = self.batch_sizes.message_batch_size
        num_messages = len(self.messages)
        if index > num_messages or index % batch_size:
            raise ProtocolViolation(f"invalid batch start index {index}")

        msgs = [self._message_row(i) for i in range(index, index + batch_size)]

        subroot_path = self.message_tree.gen_merkle_subroot_path(index, index + batch_size)
        if not IncrementalTree.verify_merkle_path(subroot_path, hash5):
            raise ProofPreconditionError("message subroot path does not verify")

        batch_end_index = min(index + batch_size, num_messages)

        # missing keys repeat the last published one
        enc_pub_keys = [self.enc_pub_keys[min(i, num_messages - 1)].as_circuit_inputs()
                        for i in range(index, index + batch_size)]

        msg_root = self.message_aq.get_root(self.tree_depths.message_tree_depth)
        current_sb_salt = self.sb_salts.get(index, 0)

        return {
            'pollEndTimestamp': self.poll_end_timestamp,
            'packedVals': pack_process_message_small_vals(
                self.max_values.max_vote_options, self.num_signups, index, batch_end_index),
            'msgRoot': msg_root,
            'msgs': msgs,
            'msgSubrootPathElements': subroot_path.path_elements,
            'coordPrivKey': self.coordinator_keypair.priv_key.as_circuit_inputs(),
            'coordPubKey': self.coordinator_keypair.pub_key.as_circuit_inputs(),
            'encPubKeys': enc_pub_keys,
            'currentStateRoot': self.state_tree.root,
            'currentBallotRoot': self.ballot_tree.root,
            'currentSbCommitment': self._sb_commitment(current_sb_salt),
            'currentSbSalt': current_sb_salt,
        }

    def process_messages(self) -> Dict[str, Any]:
        """
        Process one batch of messages, newest first, and return the
        circuit inputs for it.

        Messages are replayed from the end of the batch to its start. Slots
        past the last message are filled with empty vote messages, which
        are no-ops.
        """
        with self._lock, self._operation('process_messages'):
            if not self.has_unprocessed_messages():
                raise ProtocolViolation("no more messages to process")
            if not self.message_aq.has_root(self.tree_depths.message_tree_depth):
                raise ProtocolViolation("the message queue must be merged before processing")
            if not self.is_message_aq_merged():
                raise ProofPreconditionError("the message queue root does not match the message tree")

            batch_size = self.batch_sizes.message_batch_size
            self.maci_state.begin_processing(self.poll_id)

            if self.num_batches_processed == 0:
                num_messages = len(self.messages)
                self.current_message_batch_index = ((num_messages - 1) // batch_size) * batch_size

            self._ensure_snapshot()

            index = self.current_message_batch_index
            circuit_inputs = self._gen_process_messages_circuit_inputs_partial(index)
            current_nullifier_root = self.nullifiers_tree.root

            items: List[_BatchItem] = []
            for i in range(batch_size):
                items.append(self._process_batch_item(index + batch_size - i - 1))
            items.reverse()

            circuit_inputs.update({
                'currentStateLeaves': [item.state_leaf for item in items],
                'currentStateLeavesPathElements': [item.state_leaf_path for item in items],
                'currentBallots': [item.ballot for item in items],
                'currentBallotsPathElements': [item.ballot_path for item in items],
                'currentVoteWeights': [item.vote_weight for item in items],
                'currentVoteWeightsPathElements': [item.vote_weight_path for item in items],
                'currentNullifierLeavesPathElements': [item.nullifier_path for item in items],
                'nullifierInclusionFlags': [item.nullifier_flag for item in items],
                'numKeysGens': self.num_key_gens,
                'currentNullifierRoot': current_nullifier_root,
            })

            self.num_batches_processed += 1
            if self.current_message_batch_index > 0:
                self.current_message_batch_index -= batch_size

            new_sb_salt = self._fresh_salt(circuit_inputs['currentSbSalt'])
            self.sb_salts[self.current_message_batch_index] = new_sb_salt
            new_sb_commitment = self._sb_commitment(new_sb_salt)

            circuit_inputs['newSbSalt'] = new_sb_salt
            circuit_inputs['newSbCommitment'] = new_sb_commitment
            circuit_inputs['inputHash'] = sha256_hash([
                circuit_inputs['packedVals'],
                self.coordinator_keypair.pub_key.hash(),
                circuit_inputs['msgRoot'],
                circuit_inputs['currentSbCommitment'],
                new_sb_commitment,
                self.poll_end_timestamp,
            ])

            logger.info(f"Poll {self.poll_id}: processed message batch "
                        f"{self.num_batches_processed}/{self.total_message_batches()} "
                        f"starting at index {index}")

            if self.num_batches_processed * batch_size >= len(self.messages):
                self.maci_state.finish_processing(self.poll_id)

            return circuit_inputs

    def process_all_messages(self) -> List[Dict[str, Any]]:
        batches = []
        while self.has_unprocessed_messages():
            batches.append(self.process_messages())
        return batches

    def _process_batch_item(self, index: int) -> _BatchItem:
        if index >= len(self.messages):
            return self._noop_item()

        msg_type = self.messages[index].msg_type
        if msg_type == MessageType.VOTE:
            try:
                return self._process_vote(index)
            except (CommandRejected, DecryptionError) as e:
                logger.debug(f"Poll {self.poll_id}: message {index} is a no-op: {e}")
                return self._noop_item()
        elif msg_type == MessageType.TOPUP:
            return self._process_topup(index)
        elif msg_type == MessageType.KEYGEN:
            return self._process_key_gen(index)
        else:
            raise ProtocolViolation(f"unknown message type {msg_type} at index {index}")

    def _zero_nullifier_proof(self) -> Tuple[List[int], int]:
        return self._nullifier_path(self.nullifiers_tree.find(0).siblings), 0

    def _echo_item(self, state_index: int, nullifier_path: List[int],
                   nullifier_flag: int) -> _BatchItem:
        ballot = self.ballots[state_index]
        return _BatchItem(
            state_leaf=self.state_leaves[state_index].as_circuit_inputs(),
            state_leaf_path=self.state_tree.gen_merkle_path(state_index).path_elements,
            ballot=ballot.as_circuit_inputs(),
            ballot_path=self.ballot_tree.gen_merkle_path(state_index).path_elements,
            vote_weight=ballot.votes[0],
            vote_weight_path=ballot.vote_option_tree().gen_merkle_path(0).path_elements,
            nullifier_path=nullifier_path,
            nullifier_flag=nullifier_flag,
        )

    def _noop_item(self) -> _BatchItem:
        """Echo slot 0 unchanged"""
        return self._echo_item(0, *self._zero_nullifier_proof())

    def _process_vote(self, index: int) -> _BatchItem:
        shared_key = Keypair.gen_ecdh_shared_key(
            self.coordinator_keypair.priv_key, self.enc_pub_keys[index])
        command, signature = VoteCommand.decrypt(self.messages[index], shared_key)

        state_index = command.state_index
        if not 1 <= state_index < len(self.ballots):
            raise CommandRejected(f"invalid state index {state_index}")

        state_leaf = self.state_leaves[state_index]
        ballot = self.ballots[state_index]

        if not command.verify_signature(signature, state_leaf.pub_key):
            raise CommandRejected("invalid signature")
        if command.nonce != ballot.nonce + 1:
            raise CommandRejected(f"invalid nonce {command.nonce}, expected {ballot.nonce + 1}")
        if command.vote_option_index >= self.max_values.max_vote_options:
            raise CommandRejected(f"invalid vote option {command.vote_option_index}")

        vote_option = command.vote_option_index
        previous_weight = ballot.votes[vote_option]
        voice_credits_left = (state_leaf.voice_credit_balance
                              + self._vote_cost(previous_weight)
                              - self._vote_cost(command.new_vote_weight))
        if voice_credits_left < 0:
            raise CommandRejected("insufficient voice credits")

        zero_path, zero_flag = self._zero_nullifier_proof()
        item = _BatchItem(
            state_leaf=state_leaf.as_circuit_inputs(),
            state_leaf_path=self.state_tree.gen_merkle_path(state_index).path_elements,
            ballot=ballot.as_circuit_inputs(),
            ballot_path=self.ballot_tree.gen_merkle_path(state_index).path_elements,
            vote_weight=previous_weight,
            vote_weight_path=ballot.vote_option_tree().gen_merkle_path(vote_option).path_elements,
            nullifier_path=zero_path,
            nullifier_flag=zero_flag,
        )

        new_leaf = StateLeaf(command.new_pub_key, voice_credits_left, state_leaf.timestamp)
        new_ballot = ballot.copy()
        new_ballot.nonce += 1
        new_ballot.votes[vote_option] = command.new_vote_weight

        self.state_leaves[state_index] = new_leaf
        self.state_tree.update(state_index, new_leaf.hash())
        self.ballots[state_index] = new_ballot
        self.ballot_tree.update(state_index, new_ballot.hash())

        return item

    def _process_topup(self, index: int) -> _BatchItem:
        command = self.commands[index]
        state_index = command.state_index
        amount = command.amount
        if state_index >= len(self.ballots):
            state_index = 0
            amount = 0

        item = self._echo_item(state_index, *self._zero_nullifier_proof())

        leaf = self.state_leaves[state_index]
        new_leaf = StateLeaf(leaf.pub_key, (leaf.voice_credit_balance + amount) % SNARK_FIELD_SIZE,
                             leaf.timestamp)
        self.state_leaves[state_index] = new_leaf
        self.state_tree.update(state_index, new_leaf.hash())

        return item

    def _process_key_gen(self, index: int) -> _BatchItem:
        """
        Accept a key-generation command when its nullifier is unused and the
        signup at new_state_index carries the announced key and balance.
        Accepted commands only spend the nullifier; state is echoed.
        """
        command = self.commands[index]
        found = self.nullifiers_tree.find(command.nullifier)
        nullifier_path = self._nullifier_path(found.siblings)
        nullifier_flag = 1 if found.found else 0

        state_index = command.new_state_index
        accepted = (
            not found.found
            and 1 <= state_index < len(self.ballots)
            and self.state_leaves[state_index].pub_key == command.new_pub_key
            and self.state_leaves[state_index].voice_credit_balance == command.new_credit_balance
        )
        if not accepted:
            logger.debug(f"Poll {self.poll_id}: key generation message {index} is a no-op")
            return self._echo_item(0, nullifier_path, nullifier_flag)

        item = self._echo_item(state_index, nullifier_path, nullifier_flag)
        self.nullifiers_tree.insert(command.nullifier, 1)
        return item

    # ========================================================================
    # KEY DEACTIVATION
    # ========================================================================

    def process_deactivation_messages(self, seed: int) -> Tuple[Dict[str, Any], List[DeactivatedKeyLeaf]]:
        """
        Encrypt a validity bit for each pending deactivation request under
        the coordinator key and append the resulting leaves to the
        deactivated-keys tree.

        At most deactivation_queue_size requests are taken per call, oldest
        first; the rest stay pending for the next call.
        """
        with self._lock, self._operation('process_deactivation_messages'):
            self._ensure_snapshot()

            queue_size = self.deactivation_queue_size
            start = self.num_deactivations_processed
            end = min(start + queue_size, len(self.deactivation_messages))
            pending = list(range(start, end))

            coord_pub_key = self.coordinator_keypair.pub_key
            mask = seed
            masking_values: List[int] = []
            elgamal_enc: List[List[List[int]]] = []
            deactivated_leaves: List[DeactivatedKeyLeaf] = []
            state_leaf_path_elements: List[List[List[int]]] = []
            current_state_leaves: List[List[int]] = []

            for i in pending:
                command = self.deactivation_commands[i]
                signature = self.deactivation_signatures[i]
                state_index = command.state_index

                if 1 <= state_index <= self.num_signups:
                    pub_key = self.state_leaves[state_index].pub_key
                    leaf_index = state_index
                else:
                    pub_key = ZERO_PUB_KEY
                    leaf_index = 0
                state_leaf_path_elements.append(self.state_tree.gen_merkle_path(leaf_index).path_elements)
                current_state_leaves.append(self.state_leaves[leaf_index].as_circuit_inputs())

                status = (command.cmd_type == MessageType.VOTE
                          and signature is not None
                          and command.verify_signature(signature, pub_key))

                mask = hash2([mask, command.salt])
                masking_values.append(mask)

                c1, c2 = elgamal_encrypt_bit(coord_pub_key.raw, 1 if status else 0, mask)
                elgamal_enc.append([list(c1), list(c2)])

                leaf = DeactivatedKeyLeaf(pub_key, c1, c2, command.salt)
                self.deactivated_keys_tree.insert(leaf.hash())
                deactivated_leaves.append(leaf)

            deactivated_tree_path_elements = [
                self.deactivated_keys_tree.gen_merkle_path(
                    self.deactivated_keys_tree.next_index - len(pending) + j).path_elements
                for j in range(len(pending))
            ]
            msgs = [self.deactivation_messages[i].as_circuit_inputs() for i in pending]
            enc_pub_keys = [self.deactivation_enc_pub_keys[i].as_circuit_inputs() for i in pending]

            for _ in range(len(pending), queue_size):
                pad_mask = gen_random_salt()
                pad_c1, pad_c2 = elgamal_encrypt_bit(coord_pub_key.raw, 0, pad_mask)
                masking_values.append(pad_mask)
                elgamal_enc.append([list(pad_c1), list(pad_c2)])
                msgs.append(Message.padding(0).as_circuit_inputs())
                enc_pub_keys.append(ZERO_PUB_KEY.as_circuit_inputs())
                deactivated_tree_path_elements.append(self.state_tree.gen_merkle_path(0).path_elements)
                state_leaf_path_elements.append(self.state_tree.gen_merkle_path(0).path_elements)
                current_state_leaves.append(blank_state_leaf().as_circuit_inputs())

            self.num_deactivations_processed = end

            circuit_inputs = {
                'coordPrivKey': self.coordinator_keypair.priv_key.as_circuit_inputs(),
                'coordPubKey': coord_pub_key.as_circuit_inputs(),
                'encPubKeys': enc_pub_keys,
                'msgs': msgs,
                'deactivatedTreePathElements': deactivated_tree_path_elements,
                'stateLeafPathElements': state_leaf_path_elements,
                'currentStateLeaves': current_state_leaves,
                'elGamalEnc': elgamal_enc,
                'maskingValues': masking_values,
                'deactivatedTreeRoot': self.deactivated_keys_tree.root,
                'currentStateRoot': self.state_tree.root,
                'numSignUps': self.num_signups,
                'chainHash': self.deactivated_keys_chain_hash,
                'inputHash': sha256_hash([
                    self.deactivated_keys_tree.root,
                    self.num_signups,
                    self.state_tree.root,
                    self.deactivated_keys_chain_hash,
                ]),
            }

            logger.info(f"Poll {self.poll_id}: processed {len(pending)} deactivation messages")
            return circuit_inputs, deactivated_leaves

    def generate_circuit_inputs_for_generate_new_key(
        self,
        new_pub_key: PublicKey,
        deactivated_priv_key: PrivateKey,
        deactivated_pub_key: PublicKey,
        coordinator_pub_key: PublicKey,
        state_index: int,
        new_credit_balance: int,
        salt: int,
    ) -> NewKeyGenerationInputs:
        """
        Build the key-generation proof inputs and the encrypted
        key-generation message for a previously deactivated key.
        """
        with self._lock:
            self._ensure_snapshot()

            if not 0 <= state_index < len(self.state_leaves):
                raise InputValidationError(f"invalid state index {state_index}")

            key_hash = hash3([*deactivated_pub_key.as_array(), salt])
            deactivated_key_index = next(
                (i for i, event in enumerate(self.deactivated_key_events) if event.key_hash == key_hash),
                None)
            if deactivated_key_index is None:
                raise InputValidationError("deactivated key not found")
            event = self.deactivated_key_events[deactivated_key_index]

            z = gen_random_salt()
            c1r, c2r = elgamal_rerandomize(coordinator_pub_key.raw, z, event.c1, event.c2)

            if self.deactivated_keys_tree.next_index == 0:
                for e in self.deactivated_key_events:
                    self.deactivated_keys_tree.insert(hash5([e.key_hash, *e.c1, *e.c2]))

            nullifier = hash2([deactivated_priv_key.as_circuit_inputs(), salt])
            command = KeyGenCommand(new_pub_key, new_credit_balance, nullifier,
                                    c1r, c2r, self.poll_id)

            state_leaf = self.state_leaves[state_index]
            ecdh_keypair = Keypair()
            shared_key = Keypair.gen_ecdh_shared_key(ecdh_keypair.priv_key, coordinator_pub_key)
            message = command.encrypt(shared_key)

            state_tree_root = self.state_tree.root
            deactivated_keys_root = self.deactivated_keys_tree.root

            circuit_inputs = {
                'oldPrivKey': deactivated_priv_key.as_circuit_inputs(),
                'newPubKey': new_pub_key.as_circuit_inputs(),
                'numSignUps': self.num_signups,
                'stateIndex': state_index,
                'salt': salt,
                'stateTreeRoot': state_tree_root,
                'deactivatedKeysRoot': deactivated_keys_root,
                'stateTreeInclusionProof': self.state_tree.gen_merkle_path(state_index).path_elements,
                'oldCreditBalance': state_leaf.voice_credit_balance,
                'newCreditBalance': new_credit_balance,
                'stateLeafTimestamp': state_leaf.timestamp,
                'deactivatedKeysInclusionProof':
                    self.deactivated_keys_tree.gen_merkle_path(deactivated_key_index).path_elements,
                'deactivatedKeyIndex': deactivated_key_index,
                'c1': list(event.c1),
                'c2': list(event.c2),
                'coordinatorPubKey': coordinator_pub_key.as_circuit_inputs(),
                'encPrivKey': ecdh_keypair.priv_key.as_circuit_inputs(),
                'c1r': list(c1r),
                'c2r': list(c2r),
                'z': z,
                'nullifier': nullifier,
                'pollId': self.poll_id,
                'inputHash': sha256_hash([
                    state_tree_root,
                    deactivated_keys_root,
                    sha256_hash(message.data),
                    *coordinator_pub_key.as_circuit_inputs(),
                    *ecdh_keypair.pub_key.as_circuit_inputs(),
                ]),
            }

            return NewKeyGenerationInputs(circuit_inputs, ecdh_keypair.pub_key, message)

    # ========================================================================
    # TALLY
    # ========================================================================

    def gen_results_commitment(self, salt: int) -> int:
        return gen_tally_result_commitment(
            self.results, salt, self.tree_depths.vote_option_tree_depth)

    def gen_spent_voice_credit_subtotal_commitment(self, salt: int, num_ballots_to_count: int) -> int:
        subtotal = 0
        for ballot in self.ballots[:num_ballots_to_count]:
            subtotal += sum(self._vote_cost(v) for v in ballot.votes)
        return hash_left_right(subtotal, salt)

    def gen_per_vo_spent_voice_credits_commitment(self, salt: int, num_ballots_to_count: int) -> int:
        leaves = [0] * self.max_values.max_vote_options
        for ballot in self.ballots[:num_ballots_to_count]:
            for j, v in enumerate(ballot.votes):
                leaves[j] += self._vote_cost(v)
        return gen_tally_result_commitment(
            leaves, salt, self.tree_depths.vote_option_tree_depth)

    def tally_votes(self) -> Dict[str, Any]:
        """Tally one batch of ballots and return the circuit inputs for it"""
        with self._lock, self._operation('tally_votes'):
            if self.messages and self.num_batches_processed == 0:
                raise ProtocolViolation("messages must be processed before tallying")
            if self.has_unprocessed_messages():
                raise ProtocolViolation("all messages must be processed before tallying")
            self._ensure_snapshot()
            if not self.has_untallied_ballots():
                raise ProtocolViolation("no more ballots to tally")

            batch_size = self.batch_sizes.tally_batch_size
            batch_start_index = self.num_batches_tallied * batch_size
            previous = batch_start_index - batch_size

            if batch_start_index == 0:
                current_results_root_salt = 0
                current_per_vo_salt = 0
                current_subtotal_salt = 0
            else:
                current_results_root_salt = self.result_root_salts[previous]
                current_per_vo_salt = self.per_vo_spent_voice_credits_root_salts[previous]
                current_subtotal_salt = self.spent_voice_credit_subtotal_salts[previous]

            current_results_commitment = self.gen_results_commitment(current_results_root_salt)
            current_per_vo_commitment = self.gen_per_vo_spent_voice_credits_commitment(
                current_per_vo_salt, batch_start_index)
            current_subtotal_commitment = self.gen_spent_voice_credit_subtotal_commitment(
                current_subtotal_salt, batch_start_index)
            current_tally_commitment = 0 if batch_start_index == 0 else hash3([
                current_results_commitment,
                current_subtotal_commitment,
                current_per_vo_commitment,
            ])

            blank_ballot = Ballot.gen_blank_ballot(
                self.max_values.max_vote_options, self.tree_depths.vote_option_tree_depth)
            ballots = [b.copy() for b in self.ballots[batch_start_index:batch_start_index + batch_size]]
            while len(ballots) < batch_size:
                ballots.append(blank_ballot.copy())

            ballot_subroot_path = self.ballot_tree.gen_merkle_subroot_path(
                batch_start_index, batch_start_index + batch_size)

            current_results = list(self.results)
            current_per_vo_spent = list(self.per_vo_spent_voice_credits)
            current_subtotal = self.total_spent_voice_credits

            for ballot in ballots:
                for j, v in enumerate(ballot.votes):
                    self.results[j] += v
                    self.per_vo_spent_voice_credits[j] += self._vote_cost(v)
                    self.total_spent_voice_credits += self._vote_cost(v)

            new_results_root_salt = self._fresh_salt(current_results_root_salt)
            new_per_vo_salt = self._fresh_salt(current_per_vo_salt)
            new_subtotal_salt = self._fresh_salt(current_subtotal_salt)
            self.result_root_salts[batch_start_index] = new_results_root_salt
            self.per_vo_spent_voice_credits_root_salts[batch_start_index] = new_per_vo_salt
            self.spent_voice_credit_subtotal_salts[batch_start_index] = new_subtotal_salt

            counted = batch_start_index + batch_size
            new_tally_commitment = hash3([
                self.gen_results_commitment(new_results_root_salt),
                self.gen_spent_voice_credit_subtotal_commitment(new_subtotal_salt, counted),
                self.gen_per_vo_spent_voice_credits_commitment(new_per_vo_salt, counted),
            ])

            sb_salt = self.sb_salts.get(self.current_message_batch_index, 0)
            sb_commitment = self._sb_commitment(sb_salt)
            packed_vals = pack_tally_votes_small_vals(batch_start_index, batch_size, self.num_signups)

            circuit_inputs = {
                'stateRoot': self.state_tree.root,
                'ballotRoot': self.ballot_tree.root,
                'sbSalt': sb_salt,
                'sbCommitment': sb_commitment,
                'currentTallyCommitment': current_tally_commitment,
                'newTallyCommitment': new_tally_commitment,
                'packedVals': packed_vals,
                'inputHash': sha256_hash([
                    packed_vals,
                    sb_commitment,
                    current_tally_commitment,
                    new_tally_commitment,
                ]),
                'ballots': [b.as_circuit_inputs() for b in ballots],
                'ballotPathElements': ballot_subroot_path.path_elements,
                'votes': [list(b.votes) for b in ballots],
                'currentResults': current_results,
                'currentResultsRootSalt': current_results_root_salt,
                'currentSpentVoiceCreditSubtotal': current_subtotal,
                'currentSpentVoiceCreditSubtotalSalt': current_subtotal_salt,
                'currentPerVOSpentVoiceCredits': current_per_vo_spent,
                'currentPerVOSpentVoiceCreditsRootSalt': current_per_vo_salt,
                'newResultsRootSalt': new_results_root_salt,
                'newPerVOSpentVoiceCreditsRootSalt': new_per_vo_salt,
                'newSpentVoiceCreditSubtotalSalt': new_subtotal_salt,
            }

            self.num_batches_tallied += 1
            logger.info(f"Poll {self.poll_id}: tallied ballot batch starting at {batch_start_index}")
            return circuit_inputs

    # ========================================================================
    # COPY / EQUALITY
    # ========================================================================

    def copy(self, maci_state=None) -> 'Poll':
        """Independent deep copy, optionally bound to another state engine"""
        with self._lock:
            target_state = maci_state if maci_state is not None else self.maci_state
            memo = {id(self.maci_state): target_state}
            copied = Poll.__new__(Poll)
            for name, value in self.__dict__.items():
                if name == '_lock':
                    continue
                if name == 'maci_state':
                    copied.maci_state = target_state
                else:
                    setattr(copied, name, copy.deepcopy(value, memo))
            copied._lock = threading.RLock()
            return copied

    def __eq__(self, other):
        if not isinstance(other, Poll):
            return NotImplemented
        return (self.poll_id == other.poll_id
                and self.poll_end_timestamp == other.poll_end_timestamp
                and self.coordinator_keypair == other.coordinator_keypair
                and self.tree_depths == other.tree_depths
                and self.batch_sizes == other.batch_sizes
                and self.max_values == other.max_values
                and self.messages == other.messages
                and self.enc_pub_keys == other.enc_pub_keys
                and self.num_batches_processed == other.num_batches_processed
                and self.num_batches_tallied == other.num_batches_tallied
                and self.state_leaves == other.state_leaves
                and self.ballots == other.ballots)
