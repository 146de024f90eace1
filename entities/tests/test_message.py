"""Tests for the message entity finder/parser pair."""

import unittest

from detection.finder import run_finder
from detection.models import EventKind
from detection.parser import run_parser
from detection.watcher import Watcher
from entities.message import DESCRIPTOR, MessageViewState, find_messages, parse_message
from markup.parser import load_document, parse_fragment
from markup.query import attr_equals, first_match

FULL_MESSAGE = b"""
<div data-msg-id="msg-a:255" tabindex="0">
  <div role="heading" jsaction="click:cOuCgd.message_toggle_collapse">
    <span email="alice@example.com">Alice</span><span>to me</span>
  </div>
  <div class="body">Hello there</div>
</div>
"""

NO_TABINDEX_MESSAGE = b"""
<div data-msg-id="msg-a:16">
  <div role="heading" jsaction="click:cOuCgd.message_toggle_collapse">
    <span email="bob@example.com">Bob</span>
  </div>
  <div class="body">Hi</div>
</div>
"""

THREAD = b"""
<body>
  <div role="list" id="thread">
    <div data-msg-id="msg-f:1" tabindex="0">
      <div jsaction="click:x.message_toggle_collapse"></div>
      <div role="heading"><span email="carol@example.com">Carol</span></div>
      <div class="snippet">Collapsed snippet</div>
    </div>
    <div data-msg-id="msg-f:2" tabindex="0">
      <div role="heading"><span email="dan@example.com">Dan</span></div>
    </div>
    <div data-msg-id="msg-f:3"></div>
    <div tabindex="-1">
      <div role="heading"><span email="erin@example.com">Erin</span></div>
      <div class="body">
        Quoted:
        <div tabindex="0"><div role="heading"><span email="old@example.com">Old</span></div></div>
      </div>
    </div>
  </div>
</body>
"""


def parse_one(source):
    doc = load_document(b"<body>" + source + b"</body>")
    messages = find_messages(doc)
    return messages[0], parse_message(messages[0])


class TestMessageParser(unittest.TestCase):
    def test_full_message_scores_one(self) -> None:
        el, record = parse_one(FULL_MESSAGE)
        self.assertEqual(record.score, 1.0)
        self.assertEqual(record.probe_count, 4)
        self.assertEqual(record.errors, [])
        for name, value in record.elements.items():
            self.assertIsNotNone(value, name)
        for name, value in record.attributes.items():
            self.assertIsNotNone(value, name)
        self.assertEqual(record.attributes["message_id"], "ff")
        self.assertEqual(record.attributes["sender_email"], "alice@example.com")
        self.assertTrue(record.attributes["loaded"])
        self.assertIs(record.attributes["view_state"], MessageViewState.EXPANDED)

    def test_missing_tabindex_costs_one_probe(self) -> None:
        el, record = parse_one(NO_TABINDEX_MESSAGE)
        self.assertEqual(record.probe_count, 4)
        self.assertEqual(record.score, 0.75)
        self.assertEqual([e.probe_name for e in record.errors], ["tabindex"])
        self.assertEqual(record.attributes["message_id"], "10")
        self.assertEqual(record.attributes["sender_email"], "bob@example.com")
        self.assertIsNotNone(record.elements["body"])

    def test_whitespace_body_counts_as_body(self) -> None:
        el, record = parse_one(
            b'<div data-msg-id="msg-a:1" tabindex="0">'
            b'<div role="heading"><span email="a@b">A</span></div><div> </div></div>'
        )
        self.assertIsNotNone(record.elements["body"])
        self.assertIs(record.attributes["view_state"], MessageViewState.EXPANDED)
        self.assertEqual(record.probe_count, 4)
        self.assertEqual(record.score, 1.0)
        self.assertEqual(record.attributes["sender_email"], "a@b")

    def test_truly_empty_body_is_hidden(self) -> None:
        el, record = parse_one(
            b'<div data-msg-id="msg-a:1" tabindex="0">'
            b'<div role="heading"><span email="a@b">A</span></div><div></div></div>'
        )
        self.assertIsNone(record.elements["body"])
        self.assertIs(record.attributes["view_state"], MessageViewState.HIDDEN)
        self.assertEqual(record.probe_count, 3)

    def test_record_is_json_ready(self) -> None:
        _, record = parse_one(FULL_MESSAGE)
        payload = record.to_dict()
        self.assertEqual(payload["attributes"]["view_state"], "EXPANDED")
        self.assertEqual(payload["elements"]["sender"]["attributes"]["email"], "alice@example.com")


class TestMessageThread(unittest.TestCase):
    def setUp(self) -> None:
        self.doc = load_document(THREAD)
        self.messages = run_finder(DESCRIPTOR, self.doc)
        self.records = [run_parser(DESCRIPTOR, m) for m in self.messages]

    def test_document_root_covers_top_level_message(self) -> None:
        doc = load_document(FULL_MESSAGE)
        self.assertEqual(find_messages(doc), [doc.document_element])
        self.assertEqual(run_finder(DESCRIPTOR, doc), [doc.document_element])

    def test_finder_keeps_outermost(self) -> None:
        self.assertEqual(len(self.messages), 4)
        self.assertEqual(self.messages[3].get_attribute("tabindex"), "-1")
        quoted = first_match(self.messages[3], attr_equals("tabindex", "0"))
        self.assertIsNotNone(quoted)
        self.assertFalse(any(m is quoted for m in self.messages))

    def test_similar_siblings_score_differently(self) -> None:
        scores = [r.score for r in self.records]
        self.assertEqual(scores[0], 1.0)
        self.assertEqual(scores[1], 1.0)
        self.assertAlmostEqual(scores[2], 1 / 3)
        self.assertEqual(scores[3], 0.75)

    def test_view_states(self) -> None:
        collapsed, hidden, empty, unnumbered = self.records
        self.assertIs(collapsed.attributes["view_state"], MessageViewState.COLLAPSED)
        self.assertFalse(collapsed.attributes["loaded"])
        self.assertIsNotNone(collapsed.elements["toggle_collapse"])

        self.assertIs(hidden.attributes["view_state"], MessageViewState.HIDDEN)
        self.assertEqual(hidden.probe_count, 3)
        self.assertIsNone(hidden.elements["sender"])

        self.assertIs(empty.attributes["view_state"], MessageViewState.HIDDEN)
        self.assertEqual([e.probe_name for e in empty.errors], ["tabindex", "heading"])

        self.assertIs(unnumbered.attributes["view_state"], MessageViewState.EXPANDED)
        self.assertEqual([e.probe_name for e in unnumbered.errors], ["message id"])
        self.assertEqual(unnumbered.attributes["sender_email"], "erin@example.com")

    def test_parse_is_read_only(self) -> None:
        before = [dict(el.attributes) for el in self.messages]
        parse_message(self.messages[0])
        self.assertEqual([dict(el.attributes) for el in self.messages], before)


class TestMessageWatching(unittest.TestCase):
    def setUp(self) -> None:
        self.doc = load_document(THREAD)
        self.thread = first_match(self.doc, attr_equals("id", "thread"))
        self.watcher = Watcher(self.doc, DESCRIPTOR)
        self.events = []
        self.watcher.subscribe(self.events.append)
        self.watcher.start()
        self.events.clear()

    def test_new_message_added(self) -> None:
        node = parse_fragment(self.doc, FULL_MESSAGE)[0]
        self.thread.append_child(node)
        self.doc.deliver_mutations()
        self.assertEqual([e.kind for e in self.events], [EventKind.ADDED])
        self.assertEqual(self.events[0].match.record.attributes["message_id"], "ff")

    def test_heading_arrival_creates_candidate(self) -> None:
        shell = parse_fragment(self.doc, b'<div tabindex="0"><div class="body">late</div></div>')[0]
        self.thread.append_child(shell)
        self.doc.deliver_mutations()
        self.assertEqual(self.events, [])

        heading = parse_fragment(self.doc, b'<div role="heading"><span email="z@x.com">Z</span></div>')[0]
        shell.insert_before(heading, shell.element_children[0])
        self.doc.deliver_mutations()
        self.assertEqual(len(self.events), 1)
        self.assertIs(self.events[0].match.node, shell)

    def test_stripped_marker_tears_down(self) -> None:
        empty = first_match(self.doc, attr_equals("data-msg-id", "msg-f:3"))
        empty.remove_attribute("data-msg-id")
        self.doc.deliver_mutations()
        self.assertEqual([e.kind for e in self.events], [EventKind.REMOVED])
        self.assertIs(self.events[0].match.node, empty)

    def test_removed_message_reported_when_page_goes_quiet(self) -> None:
        hidden = first_match(self.doc, attr_equals("data-msg-id", "msg-f:2"))
        hidden.remove()
        self.doc.deliver_mutations()
        self.assertEqual([e.kind for e in self.events], [EventKind.REMOVED])
        self.doc.deliver_mutations()
        self.assertEqual(len(self.events), 1)

    def test_replaced_message_removed_before_added(self) -> None:
        old = first_match(self.doc, attr_equals("data-msg-id", "msg-f:2"))
        self.thread.insert_before(parse_fragment(self.doc, FULL_MESSAGE)[0], old)
        old.remove()
        self.doc.deliver_mutations()
        self.assertEqual([e.kind for e in self.events], [EventKind.REMOVED, EventKind.ADDED])
        self.assertIs(self.events[0].match.node, old)
        self.assertEqual(self.events[1].match.record.attributes["message_id"], "ff")

    def test_stop_flushes_every_message(self) -> None:
        self.watcher.stop()
        self.assertEqual(len(self.events), 4)
        self.assertTrue(all(e.kind is EventKind.REMOVED for e in self.events))


if __name__ == "__main__":
    unittest.main()
