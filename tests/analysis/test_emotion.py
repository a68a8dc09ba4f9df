"""Tests for the lexical emotion analyzer."""

import pytest

from metawave.analysis.emotion import EmotionAnalyzer, LexicalEmotionAnalyzer
from metawave.errors import AnalyzerUnavailableError, InvalidInputError
from metawave.models.notes import EmotionScore


@pytest.fixture
def analyzer():
    return LexicalEmotionAnalyzer()


class TestScoring:
    """Valence and arousal from lexicon hits."""

    def test_positive_text(self, analyzer):
        score = analyzer.score_text("I am so happy with how it went")
        assert score.valence == pytest.approx(1.0)
        assert score.arousal == pytest.approx(0.5)

    def test_negative_text(self, analyzer):
        score = analyzer.score_text("A sad and lonely evening")
        assert score.valence == pytest.approx(-1.0)

    def test_mixed_text_is_weighted(self, analyzer):
        # happy 1.0 vs tired 0.4
        score = analyzer.score_text("Happy but tired")
        assert score.valence == pytest.approx(0.6 / 1.4)
        assert score.arousal == pytest.approx(0.0)

    def test_negator_flips_polarity(self, analyzer):
        assert analyzer.score_text("I am not happy").valence == pytest.approx(-1.0)
        assert analyzer.score_text("It wasn't that bad").valence == pytest.approx(1.0)

    def test_negator_only_reaches_two_tokens_back(self, analyzer):
        score = analyzer.score_text("Not sure why but happy")
        assert score.valence == pytest.approx(1.0)

    def test_no_lexicon_hits_is_neutral(self, analyzer):
        assert analyzer.score_text("Bought groceries and paid rent") == EmotionScore.neutral()

    def test_low_arousal_terms(self, analyzer):
        score = analyzer.score_text("Calm and peaceful evening")
        assert score.valence == pytest.approx(1.0)
        assert score.arousal == pytest.approx(0.0)

    def test_high_arousal_terms(self, analyzer):
        score = analyzer.score_text("Furious about the urgent deadline")
        assert score.valence == pytest.approx(-1.0)
        assert score.arousal == pytest.approx(1.0)

    def test_exclamations_raise_arousal(self, analyzer):
        score = analyzer.score_text("Such a calm day!!")
        assert score.arousal == pytest.approx(0.1)

    def test_exclamation_boost_is_capped(self, analyzer):
        score = analyzer.score_text("Relaxed and calm and quiet!!!!!!!!!!")
        assert score.arousal == pytest.approx(0.2)

    def test_scores_stay_in_range(self, analyzer):
        samples = [
            "AMAZING!!!!!!!!!! incredible fantastic thrilled",
            "terrible awful horrible hate hate hate!!!",
            "not not not good",
            "",
            "12345",
        ]
        for text in samples:
            score = analyzer.score_text(text)
            assert -1.0 <= score.valence <= 1.0
            assert 0.0 <= score.arousal <= 1.0

    def test_deterministic(self, analyzer):
        text = "Grateful but a little anxious about tomorrow"
        assert analyzer.score_text(text) == analyzer.score_text(text)


class TestAnalyze:
    """Async entry point used by the orchestrator."""

    def test_satisfies_protocol(self, analyzer):
        assert isinstance(analyzer, EmotionAnalyzer)

    @pytest.mark.asyncio
    async def test_analyze_returns_score(self, analyzer):
        score = await analyzer.analyze("What a wonderful morning")
        assert score.valence > 0

    @pytest.mark.asyncio
    async def test_empty_text_is_invalid(self, analyzer):
        with pytest.raises(InvalidInputError):
            await analyzer.analyze("   ")

    @pytest.mark.asyncio
    async def test_scoring_error_becomes_unavailable(self):
        analyzer = LexicalEmotionAnalyzer(positive_terms={"good": "very"})
        with pytest.raises(AnalyzerUnavailableError):
            await analyzer.analyze("good")

    @pytest.mark.asyncio
    async def test_detailed_analysis(self, analyzer):
        detail = await analyzer.analyze_detailed("I am happy and glad.")
        assert detail.primary_emotion == "joy"
        assert detail.categories["joy"] == pytest.approx(2 / 5)
        assert detail.categories["anger"] == 0.0
        assert 0.0 <= detail.intensity <= 1.0
        assert detail.confidence == pytest.approx(len("I am happy and glad.") / 100.0)

    @pytest.mark.asyncio
    async def test_detailed_without_matches_has_no_primary(self, analyzer):
        detail = await analyzer.analyze_detailed("Paid the rent")
        assert detail.primary_emotion is None
        # No sentence punctuation lowers confidence
        assert detail.confidence == pytest.approx(len("Paid the rent") / 100.0 * 0.7)
