"""
Voice Analysis Module.

Derives speaking metrics from a transcription with word timings:
- Words per minute over speaking time
- Korean filler-word detection by category
- Silence statistics (gaps, long pauses, leading/trailing silence)
- A 0-100 confidence score from pace, fluency and articulation
"""

import math
import statistics
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from interview_core.models import WordTiming


class FillerCategory(str, Enum):
    """Filler word categories."""

    HESITATION = "hesitation"
    THINKING = "thinking"
    EMPHASIS = "emphasis"


class Trend(str, Enum):
    """Direction of confidence across answers."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


KOREAN_FILLER_WORDS: Dict[str, FillerCategory] = {
    # Hesitation
    "음": FillerCategory.HESITATION,
    "어": FillerCategory.HESITATION,
    "으": FillerCategory.HESITATION,
    "아": FillerCategory.HESITATION,
    "저": FillerCategory.HESITATION,
    "에": FillerCategory.HESITATION,
    # Thinking
    "그": FillerCategory.THINKING,
    "그게": FillerCategory.THINKING,
    "그러니까": FillerCategory.THINKING,
    "저기": FillerCategory.THINKING,
    "뭐": FillerCategory.THINKING,
    "이제": FillerCategory.THINKING,
    # Emphasis (often overused)
    "진짜": FillerCategory.EMPHASIS,
    "좀": FillerCategory.EMPHASIS,
    "되게": FillerCategory.EMPHASIS,
    "완전": FillerCategory.EMPHASIS,
    "엄청": FillerCategory.EMPHASIS,
}

SILENCE_GAP_SECONDS = 0.1
LONG_PAUSE_SECONDS = 2.0
OPTIMAL_WPM = (120, 180)


def _round(value: float, digits: int = 0) -> float:
    """Round half up."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


# =============================================================================
# Results
# =============================================================================


@dataclass
class FillerWordStats:
    word: str
    count: int
    category: FillerCategory

    def to_dict(self) -> Dict[str, Any]:
        return {"word": self.word, "count": self.count, "category": self.category.value}


@dataclass
class SilenceStats:
    total_silence_time: float = 0.0
    silence_count: int = 0
    avg_silence_length: float = 0.0
    long_pauses: int = 0
    silence_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSilenceTime": self.total_silence_time,
            "silenceCount": self.silence_count,
            "avgSilenceLength": self.avg_silence_length,
            "longPauses": self.long_pauses,
            "silenceRate": self.silence_rate,
        }


@dataclass
class VoiceConfidenceScore:
    overall: int
    speech_pace: int
    fluency: int
    articulation: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "factors": {
                "speechPace": self.speech_pace,
                "fluency": self.fluency,
                "articulation": self.articulation,
            },
        }


@dataclass
class VoiceAnalysis:
    """Speaking metrics for one answer."""

    wpm: int
    total_words: int
    filler_word_count: int
    filler_word_rate: float
    filler_words: List[FillerWordStats]
    silence_stats: SilenceStats
    speaking_time: float
    total_duration: float
    confidence: VoiceConfidenceScore

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wpm": self.wpm,
            "totalWords": self.total_words,
            "fillerWordCount": self.filler_word_count,
            "fillerWordRate": self.filler_word_rate,
            "fillerWords": [f.to_dict() for f in self.filler_words],
            "silenceStats": self.silence_stats.to_dict(),
            "speakingTime": self.speaking_time,
            "totalDuration": self.total_duration,
            "confidence": self.confidence.to_dict(),
        }


@dataclass
class VoiceTrendAnalysis:
    avg_wpm: int = 0
    avg_filler_rate: float = 0.0
    avg_confidence: int = 0
    improvement: Trend = Trend.STABLE
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avgWpm": self.avg_wpm,
            "avgFillerRate": self.avg_filler_rate,
            "avgConfidence": self.avg_confidence,
            "improvement": self.improvement.value,
            "recommendations": list(self.recommendations),
        }


# =============================================================================
# Analysis
# =============================================================================


def analyze_voice(
    text: str,
    words: Sequence[WordTiming] = (),
    audio_duration_seconds: Optional[float] = None,
) -> VoiceAnalysis:
    """
    Analyze speaking patterns.

    Args:
        text: Transcribed text; words are counted by whitespace split
        words: Word timings, in order
        audio_duration_seconds: Clip length; defaults to the last word's end

    Returns:
        VoiceAnalysis with rounded metrics
    """
    duration = audio_duration_seconds or (words[-1].end if words else 0.0)

    silence = _silence_stats(words, duration)
    speaking_time = duration - silence.total_silence_time

    word_list = text.split()
    total_words = len(word_list)
    wpm = (total_words / speaking_time) * 60 if speaking_time > 0 else 0.0

    filler_words = _detect_filler_words(word_list)
    filler_count = sum(f.count for f in filler_words)
    filler_rate = (filler_count / total_words) * 100 if total_words else 0.0

    return VoiceAnalysis(
        wpm=int(_round(wpm)),
        total_words=total_words,
        filler_word_count=filler_count,
        filler_word_rate=_round(filler_rate, 1),
        filler_words=filler_words,
        silence_stats=silence,
        speaking_time=_round(speaking_time, 1),
        total_duration=_round(duration, 1),
        confidence=_confidence_score(wpm, filler_rate, silence, words),
    )


def _detect_filler_words(words: Sequence[str]) -> List[FillerWordStats]:
    counts: Dict[str, int] = {}
    for word in words:
        normalized = word.strip().lower()
        if normalized in KOREAN_FILLER_WORDS:
            counts[normalized] = counts.get(normalized, 0) + 1

    fillers = [
        FillerWordStats(word=word, count=count, category=KOREAN_FILLER_WORDS[word])
        for word, count in counts.items()
    ]
    fillers.sort(key=lambda f: f.count, reverse=True)
    return fillers


def _silence_stats(words: Sequence[WordTiming], total_duration: float) -> SilenceStats:
    if not words:
        return SilenceStats()

    silences: List[float] = []
    long_pauses = 0

    for prev, current in zip(words, words[1:]):
        gap = current.start - prev.end
        if gap > SILENCE_GAP_SECONDS:
            silences.append(gap)
            if gap > LONG_PAUSE_SECONDS:
                long_pauses += 1

    if words[0].start > SILENCE_GAP_SECONDS:
        silences.append(words[0].start)

    last_end = words[-1].end
    if total_duration > last_end + SILENCE_GAP_SECONDS:
        silences.append(total_duration - last_end)

    total = sum(silences)
    count = len(silences)

    return SilenceStats(
        total_silence_time=_round(total, 1),
        silence_count=count,
        avg_silence_length=_round(total / count, 2) if count else 0.0,
        long_pauses=long_pauses,
        silence_rate=_round((total / total_duration) * 100, 1) if total_duration > 0 else 0.0,
    )


def pace_score(wpm: float) -> float:
    """Score speaking pace; 120-180 WPM is optimal for Korean."""
    if OPTIMAL_WPM[0] <= wpm <= OPTIMAL_WPM[1]:
        return 100.0
    if 100 <= wpm < 120:
        return 70 + ((wpm - 100) / 20) * 30
    if 180 < wpm <= 220:
        return 70 + ((220 - wpm) / 40) * 30
    if wpm < 100:
        return max(0.0, (wpm / 100) * 70)
    return max(0.0, 70 - ((wpm - 220) / 50) * 70)


def fluency_score(filler_rate: float) -> float:
    """Score fluency from the filler-word percentage."""
    if filler_rate < 2:
        return 100.0
    if filler_rate < 5:
        return 80 + ((5 - filler_rate) / 3) * 20
    if filler_rate < 10:
        return 60 + ((10 - filler_rate) / 5) * 20
    return max(0.0, 60 - ((filler_rate - 10) / 10) * 60)


def articulation_score(silence: SilenceStats, words: Sequence[WordTiming]) -> float:
    score = 100.0
    score -= min(40, silence.long_pauses * 10)

    if silence.silence_rate > 30:
        score -= (silence.silence_rate - 30) * 2

    # consistent word durations earn a bonus
    if len(words) > 5:
        durations = [w.end - w.start for w in words]
        if statistics.pstdev(durations) < 0.2:
            score += 10

    return max(0.0, min(100.0, score))


def _confidence_score(
    wpm: float,
    filler_rate: float,
    silence: SilenceStats,
    words: Sequence[WordTiming],
) -> VoiceConfidenceScore:
    pace = pace_score(wpm)
    fluency = fluency_score(filler_rate)
    articulation = articulation_score(silence, words)

    return VoiceConfidenceScore(
        overall=int(_round(pace * 0.3 + fluency * 0.4 + articulation * 0.3)),
        speech_pace=int(_round(pace)),
        fluency=int(_round(fluency)),
        articulation=int(_round(articulation)),
    )


# =============================================================================
# Feedback
# =============================================================================


def generate_voice_feedback(analysis: VoiceAnalysis) -> List[str]:
    """Human-readable feedback lines for one answer."""
    feedback: List[str] = []

    if analysis.wpm < 100:
        feedback.append("말하는 속도가 다소 느립니다. 조금 더 자신감 있게 말해보세요.")
    elif analysis.wpm > 200:
        feedback.append("말하는 속도가 빠릅니다. 천천히 또박또박 말하면 더 좋습니다.")
    elif OPTIMAL_WPM[0] <= analysis.wpm <= OPTIMAL_WPM[1]:
        feedback.append("적절한 말하기 속도를 유지하고 있습니다.")

    if analysis.filler_word_rate > 10:
        feedback.append(
            f"불필요한 추임새가 많습니다 ({analysis.filler_word_rate:.1f}%). "
            "\"음\", \"어\", \"그\" 등의 표현을 줄여보세요."
        )
    elif analysis.filler_word_rate < 3:
        feedback.append("매끄럽고 유창한 답변입니다.")

    if analysis.silence_stats.long_pauses > 2:
        feedback.append(
            f"긴 침묵이 {analysis.silence_stats.long_pauses}회 있었습니다. "
            "답변 전에 미리 생각을 정리하면 좋습니다."
        )

    if analysis.confidence.overall >= 80:
        feedback.append("전반적으로 자신감 있는 답변입니다.")
    elif analysis.confidence.overall < 50:
        feedback.append("긴장한 느낌이 전달됩니다. 심호흡하고 천천히 답변해보세요.")

    return feedback


def analyze_voice_trends(analyses: Sequence[VoiceAnalysis]) -> VoiceTrendAnalysis:
    """Aggregate several answers and detect a confidence trend."""
    if not analyses:
        return VoiceTrendAnalysis()

    n = len(analyses)
    avg_wpm = sum(a.wpm for a in analyses) / n
    avg_filler_rate = sum(a.filler_word_rate for a in analyses) / n
    avg_confidence = sum(a.confidence.overall for a in analyses) / n

    improvement = Trend.STABLE
    if n >= 4:
        midpoint = n // 2
        first = [a.confidence.overall for a in analyses[:midpoint]]
        second = [a.confidence.overall for a in analyses[midpoint:]]
        diff = statistics.mean(second) - statistics.mean(first)
        if diff > 10:
            improvement = Trend.IMPROVING
        elif diff < -10:
            improvement = Trend.DECLINING

    recommendations: List[str] = []
    if avg_wpm < 110:
        recommendations.append("전반적으로 말하는 속도를 조금 올려보세요.")
    elif avg_wpm > 190:
        recommendations.append("말하는 속도를 조금 늦춰 여유있게 답변해보세요.")

    if avg_filler_rate > 8:
        recommendations.append("추임새 사용을 줄이기 위해 답변 전 1-2초 생각하는 습관을 들이세요.")

    if improvement == Trend.DECLINING:
        recommendations.append("후반부로 갈수록 긴장도가 높아지고 있습니다. 중간에 심호흡으로 긴장을 풀어보세요.")

    return VoiceTrendAnalysis(
        avg_wpm=int(_round(avg_wpm)),
        avg_filler_rate=_round(avg_filler_rate, 1),
        avg_confidence=int(_round(avg_confidence)),
        improvement=improvement,
        recommendations=recommendations,
    )
