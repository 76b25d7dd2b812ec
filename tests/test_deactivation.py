"""Tests for key deactivation and new key generation."""

import pytest

from domainobjs import KeyGenCommand, Keypair
from utils.errors import InputValidationError
from zk import elgamal_decrypt_bit, elgamal_rerandomize, gen_random_salt, hash2

INITIAL_BALANCE = 100


@pytest.fixture
def users(maci_state):
    keypairs = [Keypair() for _ in range(3)]
    for keypair in keypairs:
        maci_state.sign_up(keypair.pub_key, INITIAL_BALANCE, 1000)
    return keypairs


@pytest.fixture
def poll(users, deploy_poll):
    return deploy_poll()


def deactivate(poll, make_vote, user, state_index, signer=None):
    message, enc_pub_key = make_vote(user, state_index, 0, 0, 1, poll_id=poll.poll_id, signer=signer)
    poll.deactivate_key(message, enc_pub_key)


class TestDeactivation:
    def test_valid_request_encrypts_one(self, poll, users, make_vote, coordinator_keypair):
        deactivate(poll, make_vote, users[1], 2)
        _, leaves = poll.process_deactivation_messages(gen_random_salt())

        assert len(leaves) == 1
        leaf = leaves[0]
        assert leaf.pub_key == users[1].pub_key
        assert elgamal_decrypt_bit(coordinator_keypair.priv_key.raw, leaf.c1, leaf.c2) == 1

    def test_rerandomized_status_still_decrypts_to_one(self, poll, users, make_vote,
                                                       coordinator_keypair):
        deactivate(poll, make_vote, users[0], 1)
        _, (leaf,) = poll.process_deactivation_messages(gen_random_salt())

        c1r, c2r = elgamal_rerandomize(coordinator_keypair.pub_key.raw, gen_random_salt(),
                                       leaf.c1, leaf.c2)
        assert (c1r, c2r) != (leaf.c1, leaf.c2)
        assert elgamal_decrypt_bit(coordinator_keypair.priv_key.raw, c1r, c2r) == 1

    def test_bad_signature_encrypts_zero(self, poll, users, make_vote, coordinator_keypair):
        deactivate(poll, make_vote, users[0], 1, signer=users[2])
        _, (leaf,) = poll.process_deactivation_messages(gen_random_salt())
        assert elgamal_decrypt_bit(coordinator_keypair.priv_key.raw, leaf.c1, leaf.c2) == 0

    def test_circuit_inputs_are_padded_to_queue_size(self, poll, users, make_vote):
        deactivate(poll, make_vote, users[0], 1)
        circuit_inputs, _ = poll.process_deactivation_messages(gen_random_salt())

        queue_size = poll.deactivation_queue_size
        for key in ('msgs', 'encPubKeys', 'maskingValues', 'elGamalEnc',
                    'deactivatedTreePathElements', 'stateLeafPathElements', 'currentStateLeaves'):
            assert len(circuit_inputs[key]) == queue_size
        assert circuit_inputs['numSignUps'] == 3
        assert circuit_inputs['deactivatedTreeRoot'] == poll.deactivated_keys_tree.root
        assert poll.deactivated_keys_tree.next_index == 1

    def test_chain_hash_tracks_messages(self, poll, users, make_vote):
        initial = poll.deactivated_keys_chain_hash
        message, enc_pub_key = make_vote(users[0], 1, 0, 0, 1)
        poll.deactivate_key(message, enc_pub_key)
        assert poll.deactivated_keys_chain_hash == hash2([initial, message.hash(enc_pub_key)])

    def test_backlog_drains_over_several_calls(self, poll, users, make_vote):
        queue_size = poll.deactivation_queue_size
        for _ in range(queue_size + 1):
            deactivate(poll, make_vote, users[0], 1)

        _, first = poll.process_deactivation_messages(gen_random_salt())
        assert len(first) == queue_size
        assert poll.has_unprocessed_deactivations()

        circuit_inputs, second = poll.process_deactivation_messages(gen_random_salt())
        assert len(second) == 1
        assert len(circuit_inputs['msgs']) == queue_size
        assert not poll.has_unprocessed_deactivations()
        assert poll.num_deactivations_processed == queue_size + 1
        assert poll.deactivated_keys_tree.next_index == queue_size + 1

    def test_requests_are_processed_once(self, poll, users, make_vote):
        deactivate(poll, make_vote, users[0], 1)
        poll.process_deactivation_messages(gen_random_salt())
        deactivate(poll, make_vote, users[1], 2)
        _, leaves = poll.process_deactivation_messages(gen_random_salt())

        assert len(leaves) == 1
        assert leaves[0].pub_key == users[1].pub_key
        assert poll.deactivated_keys_tree.next_index == 2


class TestNewKeyGeneration:
    def setup_keygen(self, maci_state, poll, users, make_vote, coordinator_keypair):
        new_keypair = Keypair()
        new_state_index = maci_state.sign_up(new_keypair.pub_key, INITIAL_BALANCE, 2000)

        deactivate(poll, make_vote, users[0], 1)
        _, leaves = poll.process_deactivation_messages(gen_random_salt())
        for leaf in leaves:
            poll.process_deactivated_key_event(leaf.key_hash(), leaf.c1, leaf.c2)

        result = poll.generate_circuit_inputs_for_generate_new_key(
            new_keypair.pub_key,
            users[0].priv_key,
            users[0].pub_key,
            coordinator_keypair.pub_key,
            1,
            INITIAL_BALANCE,
            leaves[0].salt,
        )
        return new_keypair, new_state_index, leaves[0], result

    def test_circuit_inputs(self, maci_state, poll, users, make_vote, coordinator_keypair):
        _, _, leaf, result = self.setup_keygen(
            maci_state, poll, users, make_vote, coordinator_keypair)
        circuit_inputs = result.circuit_inputs

        assert circuit_inputs['nullifier'] == hash2(
            [users[0].priv_key.as_circuit_inputs(), leaf.salt])
        assert circuit_inputs['deactivatedKeyIndex'] == 0
        assert circuit_inputs['deactivatedKeysRoot'] == poll.deactivated_keys_tree.root
        assert elgamal_decrypt_bit(coordinator_keypair.priv_key.raw,
                                   tuple(circuit_inputs['c1r']), tuple(circuit_inputs['c2r'])) == 1

    def test_unknown_deactivated_key_rejected(self, poll, users, coordinator_keypair):
        with pytest.raises(InputValidationError):
            poll.generate_circuit_inputs_for_generate_new_key(
                Keypair().pub_key, users[0].priv_key, users[0].pub_key,
                coordinator_keypair.pub_key, 1, INITIAL_BALANCE, 12345)

    def test_key_generation_message_spends_nullifier_once(self, maci_state, poll, users,
                                                          make_vote, coordinator_keypair):
        new_keypair, new_state_index, _, result = self.setup_keygen(
            maci_state, poll, users, make_vote, coordinator_keypair)

        poll.generate_new_key(result.message, result.enc_pub_key, new_state_index)
        poll.generate_new_key(result.message, result.enc_pub_key, new_state_index)
        command = poll.commands[0]
        assert isinstance(command, KeyGenCommand)
        assert command.new_pub_key == new_keypair.pub_key
        assert command.new_state_index == new_state_index
        assert poll.num_key_gens == 2

        poll.merge_all_messages()
        circuit_inputs = poll.process_messages()

        # the later copy is replayed first and spends the nullifier
        assert circuit_inputs['nullifierInclusionFlags'][:2] == [1, 0]
        assert poll.nullifiers_tree.find(command.nullifier).found
