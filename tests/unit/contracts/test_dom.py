"""
Tier 0: Document Model Contract Tests

These tests pin down the tree, selection and update contract that the
overflow scanner and the limit wiring rely on.
"""

import pytest

from charlimit.dom import (
    COMMAND_PRIORITY_HIGH,
    DELETE_CHARACTER_COMMAND,
    HISTORY_MERGE_TAG,
    INSERT_TEXT_COMMAND,
    Editor,
    NodeKind,
    Point,
    RangeSelection,
    TextMode,
    caret,
    collect_overflows,
    create_element,
    create_linebreak,
    create_overflow,
    create_paragraph,
    create_root,
    create_text,
    outline,
    point_at_end,
)
from charlimit.errors import ConfigurationError, TransactionError


def editor_with(*blocks, nodes=()):
    return Editor(root=create_root(*blocks), nodes=nodes)


class TestNodeCreation:
    def test_text_defaults_to_simple(self):
        node = create_text("hello")
        assert node.kind is NodeKind.TEXT
        assert node.mode is TextMode.NORMAL
        assert node.is_leaf
        assert node.is_simple_text

    def test_token_text_is_not_simple(self):
        node = create_text("@mention", mode=TextMode.TOKEN)
        assert node.is_text
        assert not node.is_simple_text

    def test_linebreak_is_a_newline_leaf(self):
        node = create_linebreak()
        assert node.is_leaf
        assert not node.is_text
        assert node.text == "\n"

    def test_factories_set_parents(self):
        text = create_text("a")
        paragraph = create_paragraph(text)
        root = create_root(paragraph)
        assert text.parent is paragraph
        assert paragraph.parent is root
        assert root.parent is None

    def test_keys_are_unique(self):
        assert create_text("a").key != create_text("a").key

    def test_overflow_is_an_inline_element(self):
        container = create_overflow(create_text("x"))
        assert container.is_element
        assert container.is_overflow
        assert container.is_inline


class TestNavigation:
    def setup_method(self):
        self.a = create_text("ab")
        self.b = create_text("cd", mode=TextMode.TOKEN)
        self.c = create_text("ef")
        self.container = create_overflow(self.b, self.c)
        self.paragraph = create_paragraph(self.a, self.container)
        self.root = create_root(self.paragraph)

    def test_siblings(self):
        assert self.a.next_sibling is self.container
        assert self.container.previous_sibling is self.a
        assert self.a.previous_sibling is None
        assert self.container.next_sibling is None

    def test_first_and_last_descendant(self):
        assert self.paragraph.first_descendant is self.a
        assert self.paragraph.last_descendant is self.c
        assert self.container.first_descendant is self.b

    def test_block_skips_inline_ancestors(self):
        assert self.b.block is self.paragraph
        assert self.paragraph.block is self.paragraph

    def test_inline_element_is_not_a_block(self):
        span = create_element("span", create_text("x"), inline=True)
        paragraph = create_paragraph(span)
        assert span.children[0].block is paragraph

    def test_find_ancestor_includes_self(self):
        assert self.container.find_ancestor(lambda n: n.is_overflow) is self.container
        assert self.c.find_ancestor(lambda n: n.is_overflow) is self.container
        assert self.a.find_ancestor(lambda n: n.is_overflow) is None

    def test_attached_means_under_root(self):
        assert self.c.is_attached
        assert not create_text("loose").is_attached
        assert not create_paragraph(create_text("x")).children[0].is_attached

    def test_leaves_in_document_order(self):
        assert [leaf.text for leaf in self.root.leaves()] == ["ab", "cd", "ef"]


class TestTextContent:
    def test_concatenates_leaves(self):
        root = create_root(
            create_paragraph(create_text("one"), create_linebreak(), create_text("two")),
            create_paragraph(create_text("three")),
        )
        assert root.text_content == "one\ntwothree"

    def test_size_counts_utf16_units(self):
        assert create_text("a\U0001F600").text_size == 3

    def test_empty_element(self):
        assert create_paragraph().is_empty()
        assert create_paragraph().text_content == ""


class TestOutline:
    def test_nested_view(self):
        root = create_root(
            create_paragraph(create_text("Hello"), create_overflow(create_text(" World")))
        )
        assert outline(root) == [["Hello", ("overflow", " World")]]

    def test_collect_overflows_in_order(self):
        first = create_overflow(create_text("b"))
        second = create_overflow(create_text("d"))
        root = create_root(
            create_paragraph(create_text("a"), first),
            create_paragraph(create_text("c"), second),
        )
        assert collect_overflows(root) == [first, second]


class TestPoints:
    def test_point_at_end_of_text(self):
        text = create_text("abc")
        point = point_at_end(text)
        assert (point.node, point.offset, point.type) == (text, 3, "text")

    def test_point_at_end_of_linebreak_uses_parent(self):
        br = create_linebreak()
        paragraph = create_paragraph(create_text("a"), br)
        point = point_at_end(br)
        assert (point.node, point.offset, point.type) == (paragraph, 2, "element")

    def test_point_validity(self):
        text = create_text("abc")
        create_root(create_paragraph(text))
        assert Point(text, 3).is_valid()
        assert not Point(text, 4).is_valid()
        assert not Point(create_text("detached"), 0).is_valid()

    def test_caret_is_collapsed(self):
        text = create_text("abc")
        assert caret(Point(text, 1)).is_collapsed
        assert not RangeSelection(Point(text, 0), Point(text, 2)).is_collapsed


class TestTransactions:
    def test_transaction_closes_after_commit(self):
        editor = Editor()
        captured = []
        editor.update(captured.append)
        tx = captured[0]
        assert not tx.is_open
        with pytest.raises(TransactionError):
            tx.append(tx.root, create_paragraph())

    def test_failed_update_rolls_back(self):
        text = create_text("abc")
        editor = editor_with(create_paragraph(text))

        def boom(tx):
            tx.set_text(text, "changed")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            editor.update(boom)
        assert editor.text_content() == "abc"

    def test_unregistered_kind_is_rejected(self):
        editor = editor_with(create_paragraph())
        paragraph = editor.root.children[0]
        with pytest.raises(ConfigurationError) as exc:
            editor.update(lambda tx: tx.append(paragraph, create_overflow()))
        assert exc.value.setting == "nodes"
        assert outline(editor.root) == [[]]

    def test_registered_kind_is_accepted(self):
        editor = editor_with(create_paragraph(), nodes=[NodeKind.OVERFLOW])
        paragraph = editor.root.children[0]
        editor.update(lambda tx: tx.append(paragraph, create_overflow()))
        assert outline(editor.root) == [[("overflow",)]]

    def test_nested_updates_join(self):
        text = create_text("abc")
        editor = editor_with(create_paragraph(text))
        payloads = []
        editor.register_update_listener(payloads.append)

        def outer(tx):
            editor.update(lambda inner: inner.set_text(text, "x"), tag="inner")

        editor.update(outer)
        assert len(payloads) == 1
        assert "inner" in payloads[0].tags

    def test_payload_lists_dirty_nodes(self):
        text = create_text("abc")
        paragraph = create_paragraph(text)
        editor = editor_with(paragraph)
        payloads = []
        editor.register_update_listener(payloads.append)
        editor.update(lambda tx: tx.set_text(text, "abcd"))
        assert text in payloads[0].dirty_leaves
        assert paragraph in payloads[0].dirty_elements
        assert editor.root in payloads[0].dirty_elements

    def test_selection_only_update_is_clean(self):
        text = create_text("abc")
        editor = editor_with(create_paragraph(text))
        payloads = []
        editor.register_update_listener(payloads.append)
        editor.update(lambda tx: tx.select(text))
        assert not payloads[0].dirty_leaves
        assert not payloads[0].dirty_elements

    def test_unregister_listener(self):
        editor = Editor()
        payloads = []
        unregister = editor.register_update_listener(payloads.append)
        unregister()
        editor.update(lambda tx: tx.insert_text("x"))
        assert payloads == []

    def test_cannot_insert_into_own_subtree(self):
        text = create_text("a")
        paragraph = create_paragraph(text)
        editor = editor_with(paragraph, nodes=[NodeKind.OVERFLOW])
        container = create_overflow()
        editor.update(lambda tx: tx.append(paragraph, container))
        with pytest.raises(ValueError):
            editor.update(lambda tx: tx.append(container, paragraph))


class TestElementPoints:
    def setup_method(self):
        self.a, self.b, self.c = create_text("ab"), create_text("c"), create_text("d")
        self.paragraph = create_paragraph(self.a, self.b, self.c)
        self.editor = editor_with(self.paragraph)

    def caret_at(self, offset):
        self.editor.update(lambda tx: tx.set_selection(caret(Point(self.paragraph, offset, "element"))))

    def anchor(self):
        point = self.editor.get_selection().anchor
        return point.node, point.offset

    def test_removing_an_earlier_sibling_shifts_back(self):
        self.caret_at(2)
        self.editor.update(lambda tx: tx.remove(self.a))
        assert self.anchor() == (self.paragraph, 1)
        assert self.paragraph.children[1] is self.c

    def test_removing_a_later_sibling_leaves_it(self):
        self.caret_at(1)
        self.editor.update(lambda tx: tx.remove(self.c))
        assert self.anchor() == (self.paragraph, 1)

    def test_inserting_before_shifts_forward(self):
        self.caret_at(1)
        self.editor.update(lambda tx: tx.insert_before(self.a, create_text("x")))
        assert self.anchor() == (self.paragraph, 2)
        assert self.paragraph.children[2] is self.b

    def test_inserting_at_the_caret_keeps_it_in_front(self):
        self.caret_at(1)
        new = create_text("x")
        self.editor.update(lambda tx: tx.insert_after(self.a, new))
        assert self.anchor() == (self.paragraph, 1)
        assert self.paragraph.children[1] is new

    def test_split_keeps_caret_after_both_pieces(self):
        self.caret_at(1)
        self.editor.update(lambda tx: tx.split_text(self.a, 1))
        assert self.anchor() == (self.paragraph, 2)
        assert outline(self.editor.root) == [["a", "b", "c", "d"]]
        assert self.paragraph.children[2] is self.b

    def test_replace_keeps_caret_in_place(self):
        self.caret_at(1)
        self.editor.update(lambda tx: tx.replace(self.b, create_text("y")))
        assert self.anchor() == (self.paragraph, 1)
        assert self.paragraph.children[1].text == "y"

    def test_both_ends_of_a_range_shift(self):
        self.editor.update(
            lambda tx: tx.set_selection(
                RangeSelection(Point(self.paragraph, 1, "element"), Point(self.paragraph, 3, "element"))
            )
        )
        self.editor.update(lambda tx: tx.remove(self.a))
        selection = self.editor.get_selection()
        assert (selection.anchor.offset, selection.focus.offset) == (0, 2)


class TestSplitText:
    def test_head_stays_tail_follows(self):
        text = create_text("Hello World", style="bold")
        editor = editor_with(create_paragraph(text))
        before, after = editor.update(lambda tx: tx.split_text(text, 5))
        assert before is text
        assert (before.text, after.text) == ("Hello", " World")
        assert after.style == "bold"
        assert text.next_sibling is after

    def test_offset_must_be_inside(self):
        text = create_text("abc")
        editor = editor_with(create_paragraph(text))
        with pytest.raises(ValueError):
            editor.update(lambda tx: tx.split_text(text, 0))
        with pytest.raises(ValueError):
            editor.update(lambda tx: tx.split_text(text, 3))

    def test_offset_inside_surrogate_pair(self):
        text = create_text("a\U0001F600b")
        editor = editor_with(create_paragraph(text))
        with pytest.raises(ValueError):
            editor.update(lambda tx: tx.split_text(text, 2))
        assert editor.text_content() == "a\U0001F600b"


class TestInsertText:
    def test_insert_into_empty_editor(self):
        editor = Editor()
        editor.update(lambda tx: tx.insert_text("Hello"))
        assert outline(editor.root) == [["Hello"]]
        selection = editor.get_selection()
        assert selection.anchor.offset == 5

    def test_insert_at_caret(self):
        text = create_text("Hllo")
        editor = editor_with(create_paragraph(text))

        def type_e(tx):
            tx.set_selection(caret(Point(text, 1)))
            tx.insert_text("e")

        editor.update(type_e)
        assert editor.text_content() == "Hello"
        assert editor.get_selection().anchor.offset == 2

    def test_insert_beside_token(self):
        token = create_text("@bob", mode=TextMode.TOKEN)
        editor = editor_with(create_paragraph(token))

        def type_after(tx):
            tx.select(token)
            tx.insert_text("!")

        editor.update(type_after)
        assert outline(editor.root) == [["@bob", "!"]]

    def test_insert_replaces_range(self):
        text = create_text("Hello World")
        editor = editor_with(create_paragraph(text))

        def replace(tx):
            tx.set_selection(RangeSelection(Point(text, 6), Point(text, 11)))
            tx.insert_text("There")

        editor.update(replace)
        assert editor.text_content() == "Hello There"


class TestDeleteCharacter:
    def test_backward_in_text(self):
        text = create_text("abc")
        editor = editor_with(create_paragraph(text))
        editor.update(lambda tx: tx.select(text))
        editor.update(lambda tx: tx.delete_character(True))
        assert editor.text_content() == "ab"
        assert editor.get_selection().anchor.offset == 2

    def test_forward_in_text(self):
        text = create_text("abc")
        editor = editor_with(create_paragraph(text))
        editor.update(lambda tx: tx.set_selection(caret(Point(text, 0))))
        editor.update(lambda tx: tx.delete_character(False))
        assert editor.text_content() == "bc"

    def test_astral_code_point_goes_whole(self):
        text = create_text("a\U0001F600")
        editor = editor_with(create_paragraph(text))
        editor.update(lambda tx: tx.select(text))
        editor.update(lambda tx: tx.delete_character(True))
        assert editor.text_content() == "a"
        assert editor.get_selection().anchor.offset == 1

    def test_token_goes_whole(self):
        text = create_text("ab")
        token = create_text("cd", mode=TextMode.TOKEN)
        editor = editor_with(create_paragraph(text, token))
        editor.update(lambda tx: tx.select(token))
        editor.update(lambda tx: tx.delete_character(True))
        assert outline(editor.root) == [["ab"]]
        anchor = editor.get_selection().anchor
        assert (anchor.node, anchor.offset) == (text, 2)

    def test_steps_back_into_previous_token(self):
        token = create_text("ab", mode=TextMode.TOKEN)
        text = create_text("cd")
        editor = editor_with(create_paragraph(token, text))
        editor.update(lambda tx: tx.set_selection(caret(Point(text, 0))))
        editor.update(lambda tx: tx.delete_character(True))
        assert outline(editor.root) == [["cd"]]
        anchor = editor.get_selection().anchor
        assert (anchor.node, anchor.offset) == (text, 0)

    def test_emptied_text_is_removed(self):
        first = create_text("Hello")
        last = create_text("!")
        editor = editor_with(create_paragraph(first, last))
        editor.update(lambda tx: tx.select(last))
        editor.update(lambda tx: tx.delete_character(True))
        assert outline(editor.root) == [["Hello"]]
        anchor = editor.get_selection().anchor
        assert (anchor.node, anchor.offset) == (first, 5)

    def test_merges_blocks_at_start(self):
        first = create_text("ab")
        second = create_text("cd")
        editor = editor_with(create_paragraph(first), create_paragraph(second))
        editor.update(lambda tx: tx.set_selection(caret(Point(second, 0))))
        editor.update(lambda tx: tx.delete_character(True))
        assert outline(editor.root) == [["ab", "cd"]]

    def test_range_in_one_leaf(self):
        text = create_text("Hello World")
        editor = editor_with(create_paragraph(text))
        editor.update(lambda tx: tx.set_selection(RangeSelection(Point(text, 7), Point(text, 2))))
        editor.update(lambda tx: tx.delete_character(True))
        assert editor.text_content() == "Heorld"
        assert editor.get_selection().anchor.offset == 2

    def test_range_from_empty_paragraph(self):
        empty = create_paragraph()
        text = create_text("abc")
        editor = editor_with(empty, create_paragraph(text))
        editor.update(
            lambda tx: tx.set_selection(RangeSelection(Point(empty, 0, "element"), Point(text, 2)))
        )
        editor.update(lambda tx: tx.delete_character(True))
        assert outline(editor.root) == [["c"]]
        assert editor.root.children[0] is empty
        anchor = editor.get_selection().anchor
        assert (anchor.node.text, anchor.offset) == ("c", 0)

    def test_range_from_empty_paragraph_to_end(self):
        empty = create_paragraph()
        text = create_text("abc")
        editor = editor_with(empty, create_paragraph(text), create_paragraph(create_text("z")))
        editor.update(
            lambda tx: tx.set_selection(RangeSelection(Point(empty, 0, "element"), Point(text, 3)))
        )
        editor.update(lambda tx: tx.delete_character(True))
        assert outline(editor.root) == [[], ["z"]]
        anchor = editor.get_selection().anchor
        assert (anchor.node, anchor.offset, anchor.type) == (empty, 0, "element")



class TestCommands:
    def test_default_handlers(self):
        editor = Editor()
        editor.dispatch_command(INSERT_TEXT_COMMAND, "abc")
        editor.dispatch_command(DELETE_CHARACTER_COMMAND, True)
        assert editor.text_content() == "ab"

    def test_higher_priority_wins(self):
        editor = Editor()
        editor.dispatch_command(INSERT_TEXT_COMMAND, "abc")
        seen = []
        unregister = editor.register_command(
            DELETE_CHARACTER_COMMAND, lambda tx, payload: seen.append(payload) or True,
            COMMAND_PRIORITY_HIGH,
        )
        assert editor.dispatch_command(DELETE_CHARACTER_COMMAND, True)
        assert seen == [True]
        assert editor.text_content() == "abc"

        unregister()
        editor.dispatch_command(DELETE_CHARACTER_COMMAND, True)
        assert editor.text_content() == "ab"


class TestHistory:
    def test_merge_tag_replaces_last_entry(self):
        editor = Editor()
        editor.update(lambda tx: tx.insert_text("Hello"))
        editor.update(lambda tx: tx.insert_text(" World"), tag=HISTORY_MERGE_TAG)
        assert len(editor.history) == 2
        assert editor.undo()
        assert editor.text_content() == ""
        assert not editor.undo()

    def test_undo_steps_back_one_update(self):
        editor = Editor()
        editor.update(lambda tx: tx.insert_text("Hello"))
        editor.update(lambda tx: tx.insert_text(" World"))
        assert editor.undo()
        assert editor.text_content() == "Hello"

    def test_clean_update_is_not_recorded(self):
        editor = Editor()
        editor.update(lambda tx: tx.insert_text("Hello"))
        editor.update(lambda tx: tx.set_selection(None))
        assert len(editor.history) == 2
