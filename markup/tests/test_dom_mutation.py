"""Tests for the host tree model and batched mutation delivery."""

import unittest

from markup.dom import Document, HierarchyError
from markup.mutation import ATTRIBUTES, CHILD_LIST, MutationObserver
from markup.parser import load_document, parse_fragment


class TestTreeOperations(unittest.TestCase):
    def setUp(self) -> None:
        self.doc = load_document(b"<body><ul><li id='a'>A</li><li id='b'>B</li></ul></body>")
        self.ul = self.doc.body.element_children[0]
        self.a, self.b = self.ul.element_children

    def test_sibling_navigation(self) -> None:
        self.assertIs(self.a.next_sibling, self.b)
        self.assertIs(self.b.previous_sibling, self.a)
        self.assertIsNone(self.a.previous_sibling)

    def test_remove_disconnects_subtree(self) -> None:
        self.ul.remove()
        self.assertFalse(self.a.is_connected)
        self.assertFalse(self.ul.is_connected)
        self.assertTrue(self.doc.body.is_connected)

    def test_insert_before_moves_node(self) -> None:
        self.ul.insert_before(self.b, self.a)
        self.assertEqual([c.get_attribute("id") for c in self.ul.element_children], ["b", "a"])

    def test_cannot_insert_ancestor(self) -> None:
        with self.assertRaises(HierarchyError):
            self.a.append_child(self.ul)

    def test_contains_is_inclusive(self) -> None:
        self.assertTrue(self.ul.contains(self.ul))
        self.assertTrue(self.ul.contains(self.a))
        self.assertFalse(self.a.contains(self.ul))

    def test_document_is_connected(self) -> None:
        self.assertTrue(Document().is_connected)

    def test_inserted_foreign_nodes_are_adopted(self) -> None:
        other = load_document(b"<body><p><b>x</b></p></body>")
        paragraph = other.body.element_children[0]
        self.ul.append_child(paragraph)
        self.assertIs(paragraph.owner_document, self.doc)
        self.assertIs(paragraph.element_children[0].owner_document, self.doc)


class TestMutationObserver(unittest.TestCase):
    def setUp(self) -> None:
        self.doc = load_document(b"<body><div id='root'><p>x</p></div><aside></aside></body>")
        self.root = self.doc.body.element_children[0]
        self.aside = self.doc.body.element_children[1]
        self.batches = []
        self.observer = MutationObserver(lambda records, obs: self.batches.append(records))

    def test_records_delivered_in_one_batch(self) -> None:
        self.observer.observe(self.root, child_list=True, attributes=True, subtree=True)
        node = parse_fragment(self.doc, b"<span>new</span>")[0]
        self.root.append_child(node)
        self.root.element_children[0].set_attribute("class", "c")
        self.assertEqual(self.batches, [])

        delivered = self.doc.deliver_mutations()
        self.assertEqual(delivered, 2)
        self.assertEqual(len(self.batches), 1)
        first, second = self.batches[0]
        self.assertEqual(first.type, CHILD_LIST)
        self.assertIs(first.added_nodes[0], node)
        self.assertEqual(second.type, ATTRIBUTES)
        self.assertEqual(second.attribute_name, "class")
        self.assertIsNone(second.old_value)

    def test_scope_excludes_outside_mutations(self) -> None:
        self.observer.observe(self.root, child_list=True, subtree=True)
        self.aside.append_child(parse_fragment(self.doc, b"<b>out</b>")[0])
        self.assertEqual(self.doc.deliver_mutations(), 0)
        self.assertEqual(self.batches, [])

    def test_without_subtree_only_target_reported(self) -> None:
        self.observer.observe(self.root, child_list=True)
        paragraph = self.root.element_children[0]
        paragraph.append_child(parse_fragment(self.doc, b"<i>deep</i>")[0])
        self.root.append_child(parse_fragment(self.doc, b"<i>shallow</i>")[0])
        self.doc.deliver_mutations()
        records = self.batches[0]
        self.assertEqual(len(records), 1)
        self.assertIs(records[0].target, self.root)

    def test_attribute_filter(self) -> None:
        self.observer.observe(self.root, attribute_filter=["role"])
        self.root.set_attribute("class", "ignored")
        self.root.set_attribute("role", "main")
        self.doc.deliver_mutations()
        self.assertEqual([r.attribute_name for r in self.batches[0]], ["role"])

    def test_observe_requires_a_change_type(self) -> None:
        with self.assertRaises(ValueError):
            self.observer.observe(self.root)

    def test_disconnect_drops_records(self) -> None:
        self.observer.observe(self.root, child_list=True, subtree=True)
        self.root.element_children[0].remove()
        self.observer.disconnect()
        self.doc.deliver_mutations()
        self.assertEqual(self.batches, [])

    def test_remove_child_record(self) -> None:
        self.observer.observe(self.root, child_list=True, subtree=True)
        paragraph = self.root.element_children[0]
        paragraph.remove()
        self.doc.deliver_mutations()
        record = self.batches[0][0]
        self.assertIs(record.removed_nodes[0], paragraph)
        self.assertIs(record.target, self.root)

    def test_callback_mutations_delivered_next_round(self) -> None:
        rounds = []

        def callback(records, obs):
            rounds.append(len(records))
            if len(rounds) == 1:
                self.root.set_attribute("data-seen", "1")

        observer = MutationObserver(callback)
        observer.observe(self.root, child_list=True, attributes=True, subtree=True)
        self.root.element_children[0].remove()
        self.doc.deliver_mutations()
        self.assertEqual(rounds, [1, 1])

    def test_failing_callback_does_not_block_others(self) -> None:
        def broken(records, obs):
            raise RuntimeError("observer bug")

        failing = MutationObserver(broken)
        failing.observe(self.root, child_list=True, subtree=True)
        self.observer.observe(self.root, child_list=True, subtree=True)
        self.root.element_children[0].remove()
        self.doc.deliver_mutations()
        self.assertEqual(len(self.batches), 1)

    def test_settle_listener_runs_after_all_rounds(self) -> None:
        calls = []

        def callback(records, obs):
            calls.append("round")
            if len(calls) == 1:
                self.root.set_attribute("data-seen", "1")

        observer = MutationObserver(callback)
        observer.observe(self.root, child_list=True, attributes=True, subtree=True)
        self.doc.add_settle_listener(lambda: calls.append("settled"))
        self.root.element_children[0].remove()
        self.doc.deliver_mutations()
        self.assertEqual(calls, ["round", "round", "settled"])

    def test_settle_listener_mutations_delivered_in_same_call(self) -> None:
        self.observer.observe(self.root, attributes=True)
        settled = []

        def listener():
            settled.append(True)
            if len(settled) == 1:
                self.root.set_attribute("data-late", "1")

        self.doc.add_settle_listener(listener)
        self.doc.deliver_mutations()
        self.assertEqual(len(settled), 2)
        self.assertEqual(len(self.batches), 1)
        self.assertEqual(self.batches[0][0].attribute_name, "data-late")

        self.doc.remove_settle_listener(listener)
        self.doc.deliver_mutations()
        self.assertEqual(len(settled), 2)

    def test_settle_listener_must_be_callable(self) -> None:
        with self.assertRaises(TypeError):
            self.doc.add_settle_listener("not callable")

    def test_delivery_is_bounded(self) -> None:
        def storm(records, obs):
            self.root.set_attribute("data-n", str(len(records)))

        observer = MutationObserver(storm)
        observer.observe(self.root, attributes=True)
        self.root.set_attribute("data-n", "0")
        with self.assertLogs("markup.dom", level="WARNING"):
            self.doc.deliver_mutations(max_rounds=5)


if __name__ == "__main__":
    unittest.main()
