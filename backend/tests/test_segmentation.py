"""Unit tests for topic segmentation."""

from conftest import make_message

from inbox_models import Direction
from inboxsync.services.segmentation import TopicSegmenter, segment_by_topic


def ids(segments):
    return [[m.id for m in segment] for segment in segments]


class TestTopicSegmenter:
    """Test boundary detection between adjacent messages."""

    def test_empty_history(self):
        assert segment_by_topic([]) == []

    def test_continuous_conversation_is_one_segment(self):
        messages = [
            make_message(1, text="love the new set", minutes=0),
            make_message(2, text="thank you!", minutes=2, direction=Direction.OUTBOUND),
            make_message(3, text="more like that please", minutes=5),
        ]
        assert ids(segment_by_topic(messages)) == [[1, 2, 3]]

    def test_gap_over_an_hour_splits(self):
        messages = [
            make_message(1, text="talk later", minutes=0),
            make_message(2, text="back now", minutes=61),
        ]
        assert ids(segment_by_topic(messages)) == [[1], [2]]

    def test_gap_of_exactly_an_hour_does_not_split(self):
        messages = [
            make_message(1, text="talk later", minutes=0),
            make_message(2, text="back now", minutes=60),
        ]
        assert ids(segment_by_topic(messages)) == [[1, 2]]

    def test_topic_starter_splits(self):
        messages = [
            make_message(1, text="that was fun", minutes=0),
            make_message(2, text="By the way, are you free friday", minutes=1),
        ]
        assert ids(segment_by_topic(messages)) == [[1], [2]]

    def test_question_after_inbound_splits(self):
        messages = [
            make_message(1, text="sent you something", minutes=0),
            make_message(2, text="Did it arrive?", minutes=1, direction=Direction.OUTBOUND),
            make_message(3, text="Could you resend", minutes=2, direction=Direction.OUTBOUND),
        ]
        assert ids(segment_by_topic(messages)) == [[1], [2, 3]]

    def test_interrogative_prefix_without_question_mark(self):
        messages = [
            make_message(1, text="ok", minutes=0),
            make_message(2, text="what time works", minutes=1, direction=Direction.OUTBOUND),
        ]
        assert ids(segment_by_topic(messages)) == [[1], [2]]

    def test_question_between_inbound_messages_does_not_split(self):
        messages = [
            make_message(1, text="sent you something", minutes=0),
            make_message(2, text="did it arrive?", minutes=1),
        ]
        assert ids(segment_by_topic(messages)) == [[1, 2]]

    def test_speech_text_is_considered(self):
        messages = [
            make_message(1, text="ok", minutes=0),
            make_message(2, text=None, speech_text="Hello again", minutes=1),
        ]
        assert ids(TopicSegmenter().segment(messages)) == [[1], [2]]

    def test_custom_starters(self):
        segmenter = TopicSegmenter(starters=("new topic",))
        messages = [
            make_message(1, text="ok", minutes=0),
            make_message(2, text="hey there", minutes=1),
            make_message(3, text="New topic: shoots", minutes=2),
        ]
        assert ids(segmenter.segment(messages)) == [[1, 2], [3]]
