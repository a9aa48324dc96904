"""
Text heuristics shared by the analyzer, scorer and voice learning.

Everything here is pure and deterministic: sentence and paragraph
segmentation, formality, burstiness, lexical diversity, humanization
markers and AI-tell phrases.
"""

import re
import statistics
from collections import Counter
from typing import Dict, List, Sequence, Tuple

WORD_RE = re.compile(r"[a-z0-9]+(?:['’][a-z]+)*(?:-[a-z0-9]+)*", re.IGNORECASE)
PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")

ABBREVIATIONS = {
    "mr", "mrs", "ms", "dr", "prof", "sr", "jr", "vs", "etc", "i.e", "e.g",
    "inc", "ltd", "corp", "co", "approx", "no",
}

STOPWORDS = {
    "a", "an", "the", "and", "or", "but", "if", "of", "to", "in", "on", "for",
    "with", "at", "by", "from", "as", "is", "are", "was", "were", "be", "been",
    "it", "its", "this", "that", "these", "those", "i", "you", "we", "they",
    "he", "she", "my", "your", "our", "their", "me", "us", "them", "will",
    "would", "can", "could", "should", "have", "has", "had", "do", "does",
    "did", "not", "so", "than", "then", "there", "here", "about", "into",
    "also", "just", "very", "all", "any", "some", "more", "most", "such",
    "what", "which", "how", "when", "where", "why", "need", "needs",
    "looking", "someone", "who", "able", "work", "working", "project",
}

FORMAL_WORDS = {
    "therefore", "consequently", "furthermore", "moreover", "nevertheless",
    "however", "regarding", "pursuant", "hereby", "accordingly", "indeed",
    "thus", "hence", "nonetheless", "respectfully", "sincerely", "kindly",
    "shall", "ensure", "additionally", "subsequently", "demonstrate",
}

CASUAL_WORDS = {
    "hey", "gonna", "wanna", "gotta", "stuff", "awesome", "cool", "yeah",
    "yep", "nope", "kinda", "sorta", "lots", "tons", "dunno", "btw", "lol",
    "super", "totally", "pretty", "chat", "cheers", "okay", "ok",
}

CONTRACTION_RE = re.compile(
    r"\b(?:i'm|you're|we've|they've|he's|she's|it's|we're|they're|i've|you've|"
    r"i'd|you'd|we'd|they'd|i'll|you'll|we'll|they'll|can't|won't|don't|"
    r"doesn't|didn't|isn't|aren't|wasn't|weren't|hasn't|haven't|hadn't|"
    r"couldn't|wouldn't|shouldn't|let's|that's|what's|who's|here's|there's)\b",
    re.IGNORECASE,
)

GREETING_RE = re.compile(
    r"^\s*(hi|hello|hey|dear|greetings|good (?:morning|afternoon|evening))\b",
    re.IGNORECASE,
)
SIGNOFF_RE = re.compile(
    r"\b(best regards|kind regards|warm regards|regards|cheers|thanks|thank you|"
    r"sincerely|talk soon|best)\s*[,!.]?\s*$",
    re.IGNORECASE,
)

INFORMAL_TRANSITIONS = {
    "so", "now", "plus", "anyway", "actually", "honestly", "basically",
    "look", "sure",
}
ASIDE_RE = re.compile(
    r"\([^)]{3,}\)|\s[-–]\s|\bby the way\b|\bto be fair\b|\bthat said\b|\bfwiw\b",
    re.IGNORECASE,
)

AI_TELLS = (
    "delve", "leverage", "utilize", "robust", "multifaceted", "tapestry",
    "holistic", "nuanced", "paradigm shift", "game-changing", "transformative",
    "innovative",
)
AI_HEDGING_PHRASES = (
    "it's important to note that",
    "it is important to note that",
    "it is worth mentioning",
    "in today's landscape",
    "in the ever-evolving",
)

FRAGMENT_MAX_WORDS = 4


def normalize_apostrophes(text: str) -> str:
    return text.replace("’", "'").replace("‘", "'")


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens."""
    return [w.lower() for w in WORD_RE.findall(normalize_apostrophes(text))]


def word_count(text: str) -> int:
    return len(text.split())


def content_words(text: str) -> List[str]:
    return [w for w in tokenize(text) if w not in STOPWORDS and len(w) > 2]


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in PARAGRAPH_SPLIT_RE.split(text.strip()) if p.strip()]


def split_sentences(text: str) -> List[str]:
    """Split on terminal punctuation, keeping common abbreviations intact."""
    sentences = []
    current = []
    chars = text.strip()

    for i, ch in enumerate(chars):
        current.append(ch)
        if ch in ".!?":
            # Runs like "?!" or "..." end on the last mark
            if i + 1 < len(chars) and chars[i + 1] in ".!?":
                continue
            if i + 1 < len(chars) and not chars[i + 1].isspace():
                continue
            candidate = "".join(current).strip()
            last_word = candidate.split()[-1].rstrip(".!?").lower() if candidate.split() else ""
            if last_word in ABBREVIATIONS:
                continue
            sentences.append(candidate)
            current = []
        elif ch == "\n" and i + 1 < len(chars) and chars[i + 1] == "\n":
            # A paragraph break ends a sentence even without punctuation
            candidate = "".join(current).strip()
            if candidate:
                sentences.append(candidate)
            current = []

    tail = "".join(current).strip()
    if tail:
        sentences.append(tail)
    return [s for s in sentences if s]


def sentence_lengths(text: str) -> List[int]:
    return [len(s.split()) for s in split_sentences(text)]


def average_sentence_length(text: str) -> float:
    lengths = sentence_lengths(text)
    if not lengths:
        return 0.0
    return sum(lengths) / len(lengths)


def burstiness(text: str) -> float:
    """Coefficient of variation of sentence lengths (0 for uniform text)."""
    lengths = sentence_lengths(text)
    if len(lengths) < 2:
        return 0.0
    mean = statistics.fmean(lengths)
    if mean == 0:
        return 0.0
    return statistics.pstdev(lengths) / mean


def lexical_diversity(text: str, window: int = 50) -> float:
    """
    Moving-average type/token ratio.

    Plain TTR falls as text grows; averaging over fixed windows keeps
    short and long proposals comparable.
    """
    tokens = tokenize(text)
    if not tokens:
        return 0.0
    if len(tokens) <= window:
        return len(set(tokens)) / len(tokens)
    ratios = [
        len(set(tokens[i:i + window])) / window
        for i in range(len(tokens) - window + 1)
    ]
    return statistics.fmean(ratios)


def formality_score(text: str) -> float:
    """Formality on a 0 (casual) to 10 (formal) scale, 5 is neutral."""
    tokens = tokenize(text)
    if not tokens:
        return 5.0

    formal_count = sum(1 for w in tokens if w in FORMAL_WORDS)
    casual_count = sum(1 for w in tokens if w in CASUAL_WORDS)
    contraction_count = len(CONTRACTION_RE.findall(normalize_apostrophes(text)))
    exclamations = text.count("!")

    total_markers = formal_count + casual_count + contraction_count + exclamations
    if total_markers == 0:
        return 5.0

    net = formal_count - casual_count - 0.5 * contraction_count - 0.5 * exclamations
    score = 5.0 + 5.0 * net / max(3, total_markers)
    return min(10.0, max(0.0, score))


def find_ai_tells(text: str) -> List[str]:
    lower = normalize_apostrophes(text).lower()
    found = [tell for tell in AI_TELLS if re.search(rf"\b{re.escape(tell)}", lower)]
    found.extend(phrase for phrase in AI_HEDGING_PHRASES if phrase in lower)
    return found


def detect_imperfections(text: str) -> Dict[str, bool]:
    """Which human-writing markers the text shows."""
    sentences = split_sentences(text)
    fragments = any(
        1 <= len(s.split()) <= FRAGMENT_MAX_WORDS and not GREETING_RE.match(s) and not SIGNOFF_RE.search(s)
        for s in sentences
    )

    asides = bool(ASIDE_RE.search(text))
    if not asides:
        for sentence in sentences:
            first = tokenize(sentence)[:1]
            if first and first[0] in INFORMAL_TRANSITIONS:
                asides = True
                break

    redundancy = False
    for sentence in sentences:
        counts = Counter(w for w in content_words(sentence) if len(w) >= 5)
        if counts and counts.most_common(1)[0][1] >= 2:
            redundancy = True
            break

    return {
        "fragments": fragments,
        "casual_asides": asides,
        "mild_redundancy": redundancy,
    }


def ngrams(tokens: Sequence[str], n: int) -> List[Tuple[str, ...]]:
    return [tuple(tokens[i:i + n]) for i in range(len(tokens) - n + 1)]


def candidate_phrases(text: str, min_n: int = 2, max_n: int = 4) -> List[str]:
    """Multi-word phrases that are not made only of stopwords."""
    tokens = tokenize(text)
    phrases = []
    for n in range(min_n, max_n + 1):
        for gram in ngrams(tokens, n):
            if gram[0] in STOPWORDS and gram[-1] in STOPWORDS:
                continue
            if all(w in STOPWORDS for w in gram):
                continue
            phrases.append(" ".join(gram))
    return phrases


def has_greeting(text: str) -> bool:
    return bool(GREETING_RE.match(text.strip()))


def has_signoff(text: str) -> bool:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    if not lines:
        return False
    return any(SIGNOFF_RE.search(line) for line in lines[-2:])
