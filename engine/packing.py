"""
Bit-packed public inputs and verifying-key signatures.

Small accounting values share one field element in fixed 50-bit slots so
that circuits take fewer public inputs.
"""

from typing import Dict, Sequence

from trees import IncrementalTree
from utils.errors import InputValidationError
from zk import hash5, hash_left_right

SLOT_BITS = 50
SLOT_LIMIT = 1 << SLOT_BITS
SLOT_MASK = SLOT_LIMIT - 1


def _check_slots(**values: int):
    for name, value in values.items():
        if not 0 <= value < SLOT_LIMIT:
            raise InputValidationError(f"{name}={value} does not fit in {SLOT_BITS} bits")


def pack_process_message_small_vals(max_vote_options: int, num_users: int,
                                    batch_start_index: int, batch_end_index: int) -> int:
    _check_slots(max_vote_options=max_vote_options, num_users=num_users,
                 batch_start_index=batch_start_index, batch_end_index=batch_end_index)
    return (max_vote_options
            + (num_users << 50)
            + (batch_start_index << 100)
            + (batch_end_index << 150))


def unpack_process_message_small_vals(packed_vals: int) -> Dict[str, int]:
    if not 0 <= packed_vals < (1 << 200):
        raise InputValidationError("packed value exceeds 200 bits")
    return {
        'max_vote_options': packed_vals & SLOT_MASK,
        'num_users': (packed_vals >> 50) & SLOT_MASK,
        'batch_start_index': (packed_vals >> 100) & SLOT_MASK,
        'batch_end_index': (packed_vals >> 150) & SLOT_MASK,
    }


def pack_tally_votes_small_vals(batch_start_index: int, batch_size: int, num_signups: int) -> int:
    """Batch number (start index // batch size) and signup count"""
    batch_number = batch_start_index // batch_size
    _check_slots(batch_number=batch_number, num_signups=num_signups)
    return batch_number + (num_signups << 50)


def unpack_tally_votes_small_vals(packed_vals: int) -> Dict[str, int]:
    if not 0 <= packed_vals < (1 << 100):
        raise InputValidationError("packed value exceeds 100 bits")
    return {
        'num_signups': (packed_vals >> 50) & SLOT_MASK,
        'batch_start_index': packed_vals & SLOT_MASK,
    }


def pack_subsidy_small_vals(row: int, col: int, num_signups: int) -> int:
    _check_slots(row=row, col=col, num_signups=num_signups)
    return (num_signups << 100) + (row << 50) + col


# Verifying-key signatures

def gen_process_vk_sig(state_tree_depth: int, message_tree_depth: int,
                       vote_option_tree_depth: int, batch_size: int) -> int:
    return ((batch_size << 192)
            + (state_tree_depth << 128)
            + (message_tree_depth << 64)
            + vote_option_tree_depth)


def gen_deactivation_vk_sig(message_queue_size: int, state_tree_depth: int) -> int:
    return (message_queue_size << 64) + state_tree_depth


def gen_tally_vk_sig(state_tree_depth: int, int_state_tree_depth: int,
                     vote_option_tree_depth: int) -> int:
    return ((state_tree_depth << 128)
            + (int_state_tree_depth << 64)
            + vote_option_tree_depth)


def gen_subsidy_vk_sig(state_tree_depth: int, int_state_tree_depth: int,
                       vote_option_tree_depth: int) -> int:
    return gen_tally_vk_sig(state_tree_depth, int_state_tree_depth, vote_option_tree_depth)


def gen_new_key_generation_vk_sig(state_tree_depth: int, message_tree_depth: int) -> int:
    return (state_tree_depth << 128) + message_tree_depth


def gen_tally_result_commitment(results: Sequence[int], salt: int, depth: int) -> int:
    """hash(root of the results tree, salt)"""
    tree = IncrementalTree.from_leaves(depth, 0, 5, hash5, list(results))
    return hash_left_right(tree.root, salt)
