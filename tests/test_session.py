import pytest

from conftest import make_word
from lingua_drill.models.state import Step
from lingua_drill.screens.session import (
    MAX_WRITING_POINTS, POINTS_ARTICLE_COMPLETE, POINTS_ARTICLE_READING, LearningSession, Stage, merge_word_lists,
    parse_word_list,
)

USER = "ana"


@pytest.fixture
def session(words, content, store, player, capture, dispatcher):
    s = LearningSession(USER, "Botany", words, content, store,
                        player=player, recorder=capture, dispatcher=dispatcher,
                        today=lambda: "2026-10-19")
    s.start()
    dispatcher.run_all()
    return s


def finish_words(session, dispatcher):
    drill = session.drill
    drill.jump_to(len(drill.words) - 1)
    while drill.step is not Step.MAKE_SENTENCE:
        drill.advance()
    drill.submit_sentence("Stomata open at dawn.")
    dispatcher.run_all()
    drill.advance()
    dispatcher.run_all()


def test_parse_word_list_splits_on_mixed_separators():
    text = "apple, banana，cherry、 apple\n date—egg  fig-tree"
    assert parse_word_list(text) == ["apple", "banana", "cherry", "date", "egg", "fig", "tree"]
    assert parse_word_list("  ") == []


def test_merge_keeps_first_position_and_latest_entry():
    a, b = make_word("alpha"), make_word("beta")
    a2 = make_word("alpha", "Alpha comes first.")
    merged = merge_word_lists([a, b], [a2])
    assert [w.word for w in merged] == ["alpha", "beta"]
    assert merged[0].example_sentence == "Alpha comes first."


def test_session_needs_words(content, store):
    with pytest.raises(ValueError):
        LearningSession(USER, "Botany", [], content, store)


def test_start_records_history(session, store):
    [entry] = store.get_history(USER)
    assert entry.theme == "Botany"
    assert entry.date == "2026-10-19"
    assert entry.words == ["photosynthesis", "chlorophyll", "stomata"]
    assert session.stage is Stage.WORD_LEARNING


def test_points_accumulate_into_store(session, store):
    store.save_points(USER, 20)
    session.drill.advance()
    session.drill.submit_word("photosynthesis")
    assert session.points == 1
    assert store.get_points(USER) == 21


def test_drill_mistakes_reach_the_store(session, store):
    session.drill.advance()
    session.drill.submit_word("fotosynthesis")
    assert [m.word for m in store.get_mistakes(USER)] == ["photosynthesis"]


def test_full_flow(session, dispatcher, store):
    finish_words(session, dispatcher)
    assert session.drill.completed
    assert session.stage is Stage.ARTICLE_STUDY
    assert session.article.title == "Light"

    session.complete_article()
    assert session.stage is Stage.FREE_WRITING

    writing = session.writing
    assert writing.submit("Plants need light to grow")
    dispatcher.run_all()
    assert writing.feedback.score == 6
    assert session.points == 10 + 20 + 5

    session.finish()
    assert session.stage is Stage.FINISHED
    assert store.get_points(USER) == 35


def test_article_failure_skips_to_writing(session, dispatcher, content):
    content.fail.add("generate_article")
    finish_words(session, dispatcher)
    assert session.stage is Stage.FREE_WRITING
    assert session.article is None
    assert session.writing is not None


def test_article_reading_awards_every_pass(session, dispatcher, content):
    finish_words(session, dispatcher)
    reading = session.reading
    before = session.points
    content.pronunciation_scores = [70, 40, 90]
    for _ in range(3):
        reading.toggle_recording()
        reading.toggle_recording()
        dispatcher.run_all()
    assert session.points - before == 2 * POINTS_ARTICLE_READING
    assert reading.pronunciation_result.score == 90


def test_article_playback_toggles(session, dispatcher, sink):
    finish_words(session, dispatcher)
    reading = session.reading
    reading.toggle_play()
    assert reading.is_playing
    dispatcher.run_all()
    sink.streams[-1].finish()
    assert not reading.is_playing


def test_writing_points_are_capped(session, dispatcher):
    finish_words(session, dispatcher)
    session.complete_article()
    before = session.points
    session.writing.submit(" ".join(["word"] * 150))
    dispatcher.run_all()
    assert session.points - before == MAX_WRITING_POINTS


def test_blank_writing_is_ignored(session, dispatcher):
    finish_words(session, dispatcher)
    session.complete_article()
    assert not session.writing.submit("   ")


def test_tutor_chat_after_review(session, dispatcher):
    finish_words(session, dispatcher)
    session.complete_article()
    writing = session.writing
    assert not writing.chat("Is this good?")
    writing.submit("Plants need light")
    dispatcher.run_all()
    assert writing.chat("Is this good?")
    dispatcher.run_all()
    assert [m.content for m in writing.chat_history] == ["Is this good?", "Keep practising."]


def test_notebook_toggle_persists(session, dispatcher, store):
    finish_words(session, dispatcher)
    session.complete_article()
    writing = session.writing
    assert writing.toggle_saved_word("stomata")
    assert store.get_notebook(USER) == ["stomata"]
    assert not writing.toggle_saved_word("stomata")
    assert store.get_notebook(USER) == []


def test_completing_the_article_awards_points(session, dispatcher, store):
    finish_words(session, dispatcher)
    before = session.points
    session.complete_article()
    assert session.points - before == POINTS_ARTICLE_COMPLETE
    assert store.get_points(USER) == session.points
    session.complete_article()
    assert session.points - before == POINTS_ARTICLE_COMPLETE


def test_article_failure_earns_no_completion_points(session, dispatcher, content):
    content.fail.add("generate_article")
    finish_words(session, dispatcher)
    assert session.stage is Stage.FREE_WRITING
    assert session.points == 10


def test_review_arriving_after_finish_is_dropped(session, dispatcher):
    finish_words(session, dispatcher)
    session.complete_article()
    writing = session.writing
    writing.submit("Plants need light to grow")
    before = session.points
    session.finish()
    dispatcher.run_all()
    assert session.points == before
    assert writing.feedback is None
    assert not writing.submit("More text")
