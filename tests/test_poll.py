"""Tests for poll message ingestion, batch processing and tallying."""

import pytest

from config import EngineConfig, MaxValues, TreeDepths
from domainobjs import Ballot, Keypair, KeyGenCommand, Message, MessageType, VoteCommand
from engine import MaciState, ProcessingStatus, TOPUP_PAD_KEY, unpack_process_message_small_vals
from utils.errors import InputValidationError, ProtocolViolation
from zk import SNARK_FIELD_SIZE, gen_random_salt

from conftest import POLL_END_TIMESTAMP

INITIAL_BALANCE = 100


def random_message(msg_type=MessageType.VOTE):
    return Message(msg_type, [gen_random_salt() for _ in range(Message.DATA_LENGTH)])


def is_blank(ballot: Ballot) -> bool:
    return ballot.nonce == 0 and not any(ballot.votes)


@pytest.fixture
def users(maci_state):
    keypairs = [Keypair() for _ in range(3)]
    for i, keypair in enumerate(keypairs):
        maci_state.sign_up(keypair.pub_key, INITIAL_BALANCE, 1000 + i)
    return keypairs


@pytest.fixture
def poll(users, deploy_poll):
    return deploy_poll()


def publish_vote(poll, make_vote, user, state_index, vote_option_index, weight, nonce, **kwargs):
    message, enc_pub_key = make_vote(user, state_index, vote_option_index, weight, nonce,
                                     poll_id=poll.poll_id, **kwargs)
    poll.publish_message(message, enc_pub_key)


def process(poll):
    poll.merge_all_messages()
    return poll.process_all_messages()


class TestIngestion:
    def test_publish_decrypts_command(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 2, 1, 1)
        command = poll.commands[0]
        assert isinstance(command, VoteCommand)
        assert command.state_index == 1
        assert command.vote_option_index == 2
        assert poll.message_tree.next_index == 1
        assert poll.message_aq.num_leaves == 1

    def test_undecryptable_message_stored_as_placeholder(self, poll):
        poll.publish_message(random_message(), Keypair().pub_key)
        assert len(poll.messages) == 1
        assert poll.commands[0] == VoteCommand.placeholder()

    def test_field_overflow_rejected_without_mutation(self, poll):
        data = [0] * Message.DATA_LENGTH
        data[3] = SNARK_FIELD_SIZE
        with pytest.raises(InputValidationError):
            poll.publish_message(Message(MessageType.VOTE, data), Keypair().pub_key)
        assert poll.messages == []
        assert poll.message_aq.num_leaves == 0

    def test_message_type_mismatch_rejected(self, poll):
        with pytest.raises(InputValidationError):
            poll.publish_message(random_message(MessageType.TOPUP), Keypair().pub_key)

    def test_max_messages_enforced(self, maci_state, users, tree_depths, coordinator_keypair):
        max_values = MaxValues(max_users=25, max_messages=2, max_vote_options=25)
        poll_id = maci_state.deploy_poll(POLL_END_TIMESTAMP, max_values, tree_depths, 5,
                                         coordinator_keypair)
        poll = maci_state.polls[poll_id]
        for _ in range(2):
            poll.publish_message(random_message(), Keypair().pub_key)
        with pytest.raises(InputValidationError):
            poll.publish_message(random_message(), Keypair().pub_key)

    def test_max_messages_beyond_tree_capacity_rejected(self, maci_state, users,
                                                        coordinator_keypair):
        tree_depths = TreeDepths(int_state_tree_depth=1, message_tree_depth=1,
                                 message_tree_sub_depth=1, vote_option_tree_depth=2)
        max_values = MaxValues(max_users=25, max_messages=30, max_vote_options=25)
        with pytest.raises(InputValidationError):
            maci_state.deploy_poll(POLL_END_TIMESTAMP, max_values, tree_depths, 5,
                                   coordinator_keypair)
        assert maci_state.polls == []

    def test_full_message_tree_rejected_without_mutation(self, poll):
        poll.max_values = MaxValues(max_users=25, max_messages=30, max_vote_options=25)
        for _ in range(poll.message_tree.capacity):
            poll.publish_message(random_message(), Keypair().pub_key)
        with pytest.raises(InputValidationError):
            poll.publish_message(random_message(), Keypair().pub_key)

        capacity = poll.message_tree.capacity
        assert len(poll.messages) == len(poll.commands) == len(poll.enc_pub_keys) == capacity
        assert poll.message_aq.num_leaves == capacity
        assert poll.message_tree.next_index == capacity
        poll.merge_all_messages()
        assert poll.is_message_aq_merged()

    def test_topup_uses_pad_key(self, poll):
        poll.topup_message(Message(MessageType.TOPUP, [1, 50] + [0] * 8))
        assert poll.enc_pub_keys[0] == TOPUP_PAD_KEY
        assert poll.commands[0].amount == 50

    def test_publish_after_processing_rejected(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 0, 1, 1)
        process(poll)
        with pytest.raises(ProtocolViolation):
            publish_vote(poll, make_vote, users[0], 1, 0, 1, 2)


class TestMerging:
    def test_merged_root_equals_message_tree_root(self, poll):
        for _ in range(7):
            poll.publish_message(random_message(), Keypair().pub_key)
        assert not poll.is_message_aq_merged()
        poll.merge_all_messages()
        assert poll.is_message_aq_merged()

    def test_progressive_merge(self, poll):
        for _ in range(7):
            poll.publish_message(random_message(), Keypair().pub_key)
        poll.merge_message_aq_sub_roots(1)
        poll.merge_message_aq_sub_roots(0)
        poll.merge_message_aq()
        assert poll.is_message_aq_merged()

    def test_processing_before_merge_rejected(self, poll):
        poll.publish_message(random_message(), Keypair().pub_key)
        with pytest.raises(ProtocolViolation):
            poll.process_messages()

    def test_processing_without_messages_rejected(self, poll):
        with pytest.raises(ProtocolViolation):
            poll.process_messages()


class TestVoteProcessing:
    def test_signup_and_vote(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 2, 1, 1)
        process(poll)

        assert poll.ballots[1].nonce == 1
        assert poll.ballots[1].votes[2] == 1
        assert poll.state_leaves[1].voice_credit_balance == INITIAL_BALANCE - 1
        for index, ballot in enumerate(poll.ballots):
            if index != 1:
                assert is_blank(ballot)

    def test_state_and_ballot_trees_follow_leaves(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[1], 2, 4, 3, 1)
        process(poll)
        assert poll.state_tree.get_leaf(2) == poll.state_leaves[2].hash()
        assert poll.ballot_tree.get_leaf(2) == poll.ballots[2].hash()

    def test_invalid_vote_option_is_noop(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, poll.max_values.max_vote_options, 1, 1)
        poll.merge_all_messages()
        circuit_inputs = poll.process_messages()

        assert is_blank(poll.ballots[1])
        assert circuit_inputs['currentStateRoot'] == poll.state_tree.root
        assert circuit_inputs['currentBallotRoot'] == poll.ballot_tree.root

    def test_wrong_signer_is_noop(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 0, 1, 1, signer=users[1])
        process(poll)
        assert is_blank(poll.ballots[1])

    def test_stale_nonce_is_noop(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 0, 1, 2)
        process(poll)
        assert is_blank(poll.ballots[1])

    def test_unknown_state_index_is_noop(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 9, 0, 1, 1)
        process(poll)
        assert all(is_blank(ballot) for ballot in poll.ballots)

    def test_insufficient_credits_is_noop(self, poll, users, make_vote):
        # quadratic cost 11 * 11 exceeds the balance of 100
        publish_vote(poll, make_vote, users[0], 1, 0, 11, 1)
        process(poll)
        assert is_blank(poll.ballots[1])
        assert poll.state_leaves[1].voice_credit_balance == INITIAL_BALANCE

    def test_linear_credit_model(self, coordinator_keypair, tree_depths, max_values, make_vote):
        state = MaciState(EngineConfig(state_tree_depth=4, voice_credit_model="linear"))
        user = Keypair()
        state.sign_up(user.pub_key, INITIAL_BALANCE, 1)
        poll = state.polls[state.deploy_poll(
            POLL_END_TIMESTAMP, max_values, tree_depths, 5, coordinator_keypair)]

        publish_vote(poll, make_vote, user, 1, 0, 11, 1)
        process(poll)
        assert poll.ballots[1].votes[0] == 11
        assert poll.state_leaves[1].voice_credit_balance == INITIAL_BALANCE - 11

    def test_messages_replay_newest_first(self, poll, users, make_vote):
        # both carry nonce 1; the later one is processed first and wins
        publish_vote(poll, make_vote, users[0], 1, 2, 1, 1)
        publish_vote(poll, make_vote, users[0], 1, 3, 2, 1)
        process(poll)
        assert poll.ballots[1].nonce == 1
        assert poll.ballots[1].votes == [0, 0, 0, 2] + [0] * 21

    def test_nonce_increments_once_per_accepted_vote(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 0, 2, 2)
        publish_vote(poll, make_vote, users[0], 1, 0, 1, 1)
        process(poll)
        assert poll.ballots[1].nonce == 2
        assert poll.ballots[1].votes[0] == 2
        assert poll.state_leaves[1].voice_credit_balance == INITIAL_BALANCE - 4

    def test_key_change(self, poll, users, make_vote):
        new_keypair = Keypair()
        publish_vote(poll, make_vote, users[0], 1, 0, 1, 1, new_pub_key=new_keypair.pub_key)
        process(poll)
        assert poll.state_leaves[1].pub_key == new_keypair.pub_key

    def test_vote_does_not_touch_signup_registry(self, poll, users, make_vote, maci_state):
        root_before = maci_state.state_tree.root
        publish_vote(poll, make_vote, users[0], 1, 2, 1, 1)
        process(poll)
        assert maci_state.state_tree.root == root_before
        assert poll.state_tree.root != root_before


class TestTopup:
    def test_topup_adds_to_balance(self, poll):
        poll.topup_message(Message(MessageType.TOPUP, [2, 50] + [0] * 8))
        process(poll)
        assert poll.state_leaves[2].voice_credit_balance == INITIAL_BALANCE + 50

    def test_out_of_range_topup_changes_nothing(self, poll):
        poll.topup_message(Message(MessageType.TOPUP, [40, 50] + [0] * 8))
        poll.merge_all_messages()
        circuit_inputs = poll.process_messages()
        assert circuit_inputs['currentStateRoot'] == poll.state_tree.root


class TestBatches:
    def test_batch_is_padded(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 0, 1, 1)
        poll.merge_all_messages()
        circuit_inputs = poll.process_messages()

        assert len(circuit_inputs['msgs']) == 5
        assert circuit_inputs['msgs'][1] == [MessageType.VOTE] + [0] * 10 + [0]
        assert len(circuit_inputs['encPubKeys']) == 5
        assert len(circuit_inputs['currentStateLeaves']) == 5
        assert circuit_inputs['nullifierInclusionFlags'] == [0] * 5

    def test_batches_run_from_newest_to_oldest(self, poll):
        for _ in range(6):
            poll.publish_message(random_message(), Keypair().pub_key)
        poll.merge_all_messages()
        assert poll.processing_status == ProcessingStatus.NOT_STARTED

        first = poll.process_messages()
        assert poll.processing_status == ProcessingStatus.IN_PROGRESS
        second = poll.process_messages()
        assert poll.processing_status == ProcessingStatus.SEALED

        first_vals = unpack_process_message_small_vals(first['packedVals'])
        second_vals = unpack_process_message_small_vals(second['packedVals'])
        assert (first_vals['batch_start_index'], first_vals['batch_end_index']) == (5, 6)
        assert (second_vals['batch_start_index'], second_vals['batch_end_index']) == (0, 5)
        assert first_vals['num_users'] == 3

        with pytest.raises(ProtocolViolation):
            poll.process_messages()

    def test_sb_commitments_chain_between_batches(self, poll):
        for _ in range(6):
            poll.publish_message(random_message(), Keypair().pub_key)
        poll.merge_all_messages()
        first, second = poll.process_all_messages()

        assert first['currentSbSalt'] == 0
        assert first['newSbSalt'] != first['currentSbSalt']
        assert second['currentSbSalt'] == first['newSbSalt']
        assert second['currentSbCommitment'] == first['newSbCommitment']
        assert 0 <= second['inputHash'] < SNARK_FIELD_SIZE

    def test_token_released_when_sealed(self, poll, maci_state):
        poll.publish_message(random_message(), Keypair().pub_key)
        process(poll)
        assert maci_state.processing.is_idle

    def test_single_writer(self, maci_state, users, deploy_poll):
        poll_a = deploy_poll()
        poll_b = deploy_poll()
        for _ in range(6):
            poll_a.publish_message(random_message(), Keypair().pub_key)
        poll_b.publish_message(random_message(), Keypair().pub_key)
        poll_a.merge_all_messages()
        poll_b.merge_all_messages()

        poll_a.process_messages()
        with pytest.raises(ProtocolViolation):
            poll_b.process_messages()
        assert poll_b.num_batches_processed == 0

        poll_a.process_messages()
        poll_b.process_messages()
        assert poll_b.processing_status == ProcessingStatus.SEALED


class TestKeyGenMessages:
    def test_undecryptable_key_generation_is_noop(self, poll):
        poll.generate_new_key(random_message(MessageType.KEYGEN), Keypair().pub_key, 1)
        assert poll.commands[0] == KeyGenCommand.placeholder()
        assert poll.num_key_gens == 0

        poll.merge_all_messages()
        circuit_inputs = poll.process_messages()
        # the placeholder nullifier 0 is already in the tree
        assert circuit_inputs['nullifierInclusionFlags'][0] == 1
        assert circuit_inputs['numKeysGens'] == 0
        assert all(is_blank(ballot) for ballot in poll.ballots)


class TestTally:
    def test_tally_requires_processing(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 0, 1, 1)
        with pytest.raises(ProtocolViolation):
            poll.tally_votes()

    def test_poll_without_messages_can_be_tallied(self, poll, users):
        circuit_inputs = poll.tally_votes()

        assert not poll.has_untallied_ballots()
        assert not any(poll.results)
        assert poll.total_spent_voice_credits == 0
        assert circuit_inputs['currentTallyCommitment'] == 0
        assert circuit_inputs['sbSalt'] == 0
        assert circuit_inputs['stateRoot'] == poll.state_tree.root

    def test_publish_after_tally_rejected(self, poll, users):
        poll.tally_votes()
        with pytest.raises(ProtocolViolation):
            poll.publish_message(random_message(), Keypair().pub_key)
        assert poll.messages == []

    def test_tally_results(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 2, 3, 1)
        publish_vote(poll, make_vote, users[1], 2, 2, 1, 1)
        publish_vote(poll, make_vote, users[2], 3, 0, 5, 1)
        process(poll)

        assert poll.has_untallied_ballots()
        circuit_inputs = poll.tally_votes()
        assert not poll.has_untallied_ballots()

        assert poll.results[:3] == [5, 0, 4]
        assert poll.per_vo_spent_voice_credits[:3] == [25, 0, 10]
        assert poll.total_spent_voice_credits == 35
        assert circuit_inputs['currentTallyCommitment'] == 0
        assert len(circuit_inputs['ballots']) == 5

        with pytest.raises(ProtocolViolation):
            poll.tally_votes()

    def test_tally_commitments_chain(self, maci_state, users, deploy_poll, make_vote):
        extra = [Keypair() for _ in range(4)]
        for keypair in extra:
            maci_state.sign_up(keypair.pub_key, INITIAL_BALANCE, 2000)
        poll = deploy_poll()
        publish_vote(poll, make_vote, users[0], 1, 1, 2, 1)
        publish_vote(poll, make_vote, extra[3], 7, 1, 3, 1)
        process(poll)

        first = poll.tally_votes()
        second = poll.tally_votes()
        assert second['currentTallyCommitment'] == first['newTallyCommitment']
        assert poll.results[1] == 5
        assert not poll.has_untallied_ballots()


class TestPollCopy:
    def test_copy_is_independent(self, poll, users, make_vote):
        publish_vote(poll, make_vote, users[0], 1, 2, 1, 1)
        copied = poll.copy()
        assert copied == poll

        process(copied)
        assert copied != poll
        assert poll.num_batches_processed == 0
        assert poll.message_aq.sub_roots_merged is False
