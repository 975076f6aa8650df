import itertools

from conversation_tree.conversation_database.data_models.message import Message
from conversation_tree.conversation_database.data_models.parts import TextPart
from conversation_tree.llms.base import Roles
from conversation_tree.tree.builder import build_tree, check_invariants
from conversation_tree.tree.resolver import (
    default_thread,
    newest_leaf_under,
    sibling_leaf,
    thread_depth,
    thread_to_node,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _msg(
    message_id: str,
    parent_id: str | None = None,
    ts: int = 0,
    role: Roles = Roles.USER,
    text: str | None = None,
    partial: bool = False,
    chat_id: str = "c1",
) -> Message:
    return Message(
        id=message_id,
        chat_id=chat_id,
        role=role,
        parts=[TextPart(text=text if text is not None else message_id)],
        create_timestamp=ts,
        parent_id=parent_id,
        is_partial=partial,
    )


def _ids(messages: list[Message]) -> list[str]:
    return [m.id for m in messages]


def _branching_chat() -> list[Message]:
    """
    u1 -> a1 -> u2 -> a2
       -> a1b                (regenerated answer, newer)
    u1b -> a3                (edited first question, newer root)
    """
    return [
        _msg("u1", None, 10),
        _msg("a1", "u1", 20, Roles.ASSISTANT),
        _msg("u2", "a1", 30),
        _msg("a2", "u2", 40, Roles.ASSISTANT),
        _msg("a1b", "u1", 50, Roles.ASSISTANT),
        _msg("u1b", None, 60),
        _msg("a3", "u1b", 70, Roles.ASSISTANT),
    ]


# ---------------------------------------------------------------------------
# Tree builder
# ---------------------------------------------------------------------------


class TestBuildTree:
    def test_empty_input(self):
        tree = build_tree([])
        assert len(tree) == 0
        assert tree.roots == []
        assert default_thread(tree) == []
        assert check_invariants(tree) == []

    def test_children_sorted_by_timestamp_then_id(self):
        tree = build_tree(
            [
                _msg("r", None, 0),
                _msg("c", "r", 5),
                _msg("b", "r", 3),
                _msg("a", "r", 5),
            ]
        )
        assert _ids(tree.children("r")) == ["b", "a", "c"]

    def test_roots_are_under_the_none_key(self):
        tree = build_tree(_branching_chat())
        assert _ids(tree.children_by_parent_id[None]) == ["u1", "u1b"]
        assert _ids(tree.roots) == ["u1", "u1b"]

    def test_duplicate_ids_keep_final_version(self):
        partial = _msg("a1", "u1", 20, Roles.ASSISTANT, text="Hel", partial=True)
        final = _msg("a1", "u1", 20, Roles.ASSISTANT, text="Hello")
        for order in ([partial, final], [final, partial]):
            tree = build_tree([_msg("u1"), *order])
            assert tree.nodes_by_id["a1"].text == "Hello"
            assert not tree.nodes_by_id["a1"].is_partial
            assert _ids(tree.children("u1")) == ["a1"]

    def test_duplicate_ids_keep_latest_timestamp(self):
        older = _msg("u1", None, 1, text="old")
        newer = _msg("u1", None, 2, text="new")
        assert build_tree([newer, older]).nodes_by_id["u1"].text == "new"
        assert build_tree([older, newer]).nodes_by_id["u1"].text == "new"

    def test_orphans_are_kept_but_not_rooted(self):
        tree = build_tree([_msg("u1"), _msg("a9", "missing", 5, Roles.ASSISTANT)])
        assert _ids(tree.orphans) == ["a9"]
        assert "a9" in tree
        assert _ids(tree.roots) == ["u1"]

    def test_same_tree_for_every_input_order(self):
        messages = _branching_chat()[:5]
        expected = build_tree(messages)
        for order in itertools.permutations(messages):
            tree = build_tree(order)
            assert tree.children_by_parent_id == expected.children_by_parent_id
            assert list(tree.nodes_by_id) == list(expected.nodes_by_id)


class TestSiblings:
    def test_sibling_info(self):
        tree = build_tree(_branching_chat())
        info = tree.sibling_info("a1")
        assert info is not None
        assert info.siblings == ["a1", "a1b"]
        assert info.index == 0
        assert tree.has_siblings("a1")
        assert tree.has_siblings("u1")

    def test_only_child_has_no_siblings(self):
        tree = build_tree(_branching_chat())
        assert not tree.has_siblings("a2")
        assert tree.sibling_info("a2").siblings == ["a2"]

    def test_unknown_message(self):
        tree = build_tree(_branching_chat())
        assert tree.sibling_info("nope") is None
        assert not tree.has_siblings("nope")


class TestCheckInvariants:
    def test_healthy_tree(self):
        tree = build_tree([_msg("u1"), _msg("a1", "u1", 1, Roles.ASSISTANT)])
        assert check_invariants(tree) == []

    def test_reports_every_violation(self):
        tree = build_tree(
            [
                _msg("u1"),
                _msg("u2", None, 1),
                _msg("a1", "u1", 2, Roles.ASSISTANT, partial=True),
                _msg("a2", "u2", 3, Roles.ASSISTANT, partial=True),
                _msg("a9", "missing", 4, Roles.ASSISTANT),
            ]
        )
        problems = check_invariants(tree)
        assert any("exactly one root" in p for p in problems)
        assert any("missing parent missing" in p for p in problems)
        assert any("more than one partial" in p for p in problems)

    def test_reports_rootless_cycle(self):
        tree = build_tree([_msg("u1"), _msg("x", "y", 1), _msg("y", "x", 2), _msg("z", "x", 3)])
        problems = check_invariants(tree)
        assert problems == ["messages unreachable through a parent cycle: ['x', 'y', 'z']"]


# ---------------------------------------------------------------------------
# Thread resolver
# ---------------------------------------------------------------------------


class TestDefaultThread:
    def test_prefers_newest_branch(self):
        tree = build_tree([_msg("r"), _msg("a", "r", 1), _msg("b", "r", 2)])
        assert _ids(default_thread(tree)) == ["r", "b"]

    def test_equal_timestamps_fall_back_to_id(self):
        tree = build_tree([_msg("r"), _msg("b", "r", 1), _msg("a", "r", 1)])
        assert _ids(default_thread(tree)) == ["r", "b"]

    def test_newest_root_wins(self):
        assert _ids(default_thread(build_tree(_branching_chat()))) == ["u1b", "a3"]

    def test_newest_branch_inside_older_root(self):
        messages = [m for m in _branching_chat() if m.id not in ("u1b", "a3")]
        assert _ids(default_thread(build_tree(messages))) == ["u1", "a1b"]

    def test_deterministic_for_every_input_order(self):
        messages = _branching_chat()[:6]
        expected = _ids(default_thread(build_tree(messages)))
        for order in itertools.permutations(messages):
            assert _ids(default_thread(build_tree(order))) == expected

    def test_orphans_are_skipped(self):
        tree = build_tree([_msg("u1"), _msg("a1", "u1", 1), _msg("x", "gone", 99)])
        assert _ids(default_thread(tree)) == ["u1", "a1"]

    def test_repeated_calls_are_identical(self):
        tree = build_tree(_branching_chat())
        first = default_thread(tree)
        assert [m.model_dump_json() for m in default_thread(tree)] == [m.model_dump_json() for m in first]


class TestThreadToNode:
    def test_path_to_every_node(self):
        messages = _branching_chat()
        tree = build_tree(messages)
        by_id = {m.id: m for m in messages}
        for message in messages:
            depth = 0
            current = message
            while current.parent_id is not None:
                depth += 1
                current = by_id[current.parent_id]
            thread = thread_to_node(tree, message.id)
            assert thread[-1].id == message.id
            assert len(thread) == depth + 1
            assert thread_depth(tree, message.id) == depth

    def test_old_branch_stays_reachable(self):
        tree = build_tree(_branching_chat())
        assert _ids(thread_to_node(tree, "a2")) == ["u1", "a1", "u2", "a2"]

    def test_unknown_target(self):
        tree = build_tree(_branching_chat())
        assert thread_to_node(tree, "nope") == []
        assert thread_to_node(tree, None) == []
        assert thread_depth(tree, "nope") is None

    def test_orphan_chain(self):
        tree = build_tree([_msg("u1"), _msg("x", "gone", 1), _msg("y", "x", 2)])
        assert thread_to_node(tree, "x") == []
        assert thread_to_node(tree, "y") == []

    def test_cycle_does_not_hang(self):
        tree = build_tree([_msg("u1"), _msg("x", "y", 1), _msg("y", "x", 2)])
        assert thread_to_node(tree, "x") == []
        assert _ids(default_thread(tree)) == ["u1"]
        assert newest_leaf_under(tree, "x") is not None


class TestBranchNavigation:
    def test_newest_leaf_under(self):
        tree = build_tree(_branching_chat())
        assert newest_leaf_under(tree, "u1").id == "a1b"
        assert newest_leaf_under(tree, "a1").id == "a2"
        assert newest_leaf_under(tree, "nope") is None

    def test_sibling_leaf(self):
        tree = build_tree(_branching_chat())
        assert sibling_leaf(tree, "a1", "next").id == "a1b"
        assert sibling_leaf(tree, "a1b", "prev").id == "a2"
        assert sibling_leaf(tree, "u1", "next").id == "a3"

    def test_sibling_leaf_at_the_ends(self):
        tree = build_tree(_branching_chat())
        assert sibling_leaf(tree, "a1", "prev") is None
        assert sibling_leaf(tree, "a1b", "next") is None
        assert sibling_leaf(tree, "a2", "next") is None


def test_edit_of_first_message_branches_at_the_root():
    tree = build_tree(
        [
            _msg("u1", None, 1),
            _msg("a1", "u1", 2, Roles.ASSISTANT),
            _msg("u1b", None, 3, text="new text"),
            _msg("a2", "u1b", 4, Roles.ASSISTANT),
        ]
    )
    assert _ids(default_thread(tree)) == ["u1b", "a2"]
    assert _ids(thread_to_node(tree, "a1")) == ["u1", "a1"]
