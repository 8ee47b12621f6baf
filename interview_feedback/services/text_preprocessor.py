"""
Answer text preprocessing before it is sent to the feedback model.

Cleans free-form interview answers so the prompt stays small without losing
what the grader needs to see:
- Screens for SQL / script / shell injection patterns and sanitizes on a hit
- Removes filler words and verbose phrases
- Compresses low-information sentences while keeping questions, narrative
  connectors and emotional markers intact
- Optionally runs a more aggressive global pass
- Enforces a maximum length, cutting at sentence or word boundaries

The security screening is a heuristic filter, not a trust boundary. Queries
stay parameterized and output stays encoded where it is rendered.

Preprocessing never raises for bad input: anomalies become warnings on the
returned ``PreprocessResult``.
"""
import html
import logging
import math
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple, Union

logger = logging.getLogger(__name__)


Replacement = Union[str, Callable[[re.Match], str]]


# =============================================================================
# Result Types
# =============================================================================

@dataclass
class TextStats:
    """Size measurements of a piece of text."""
    characters: int = 0
    words: int = 0
    estimated_tokens: int = 0
    token_density: float = 0.0  # estimated tokens per 100 characters

    def to_dict(self) -> Dict[str, float]:
        return {
            "characters": self.characters,
            "words": self.words,
            "estimated_tokens": self.estimated_tokens,
            "token_density": self.token_density,
        }


@dataclass
class SecurityFindings:
    """Matched threat snippets grouped by category."""
    sql: List[str] = field(default_factory=list)
    xss: List[str] = field(default_factory=list)
    command: List[str] = field(default_factory=list)
    detectors: List[str] = field(default_factory=list)  # names of detectors that fired

    @property
    def has_threats(self) -> bool:
        return bool(self.sql or self.xss or self.command)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"sql": list(self.sql), "xss": list(self.xss), "command": list(self.command)}


@dataclass
class PreprocessOptions:
    """Tuning knobs for a preprocessing run."""
    max_length: int = 4000
    target_reduction_ratio: float = 0.4
    aggressive: bool = False


@dataclass
class PreprocessResult:
    """Everything a preprocessing run produced."""
    processed_text: str
    security_findings: SecurityFindings
    original_stats: TextStats
    processed_stats: TextStats
    reduction_percent: int
    compression_ratio_percent: int
    warnings: List[str] = field(default_factory=list)
    applied_optimizations: List[str] = field(default_factory=list)

    @property
    def tokens_saved(self) -> int:
        return self.original_stats.estimated_tokens - self.processed_stats.estimated_tokens


# =============================================================================
# Threat Detectors
# =============================================================================

@dataclass(frozen=True)
class ThreatDetector:
    """A named pattern that flags one kind of injection attempt."""
    name: str
    category: str  # "sql", "xss" or "command"
    pattern: Pattern[str]

    def find(self, text: str) -> List[str]:
        return [m.group(0) for m in self.pattern.finditer(text)]


def _detector(name: str, category: str, regex: str, flags: int = re.IGNORECASE) -> ThreatDetector:
    return ThreatDetector(name=name, category=category, pattern=re.compile(regex, flags))


DEFAULT_THREAT_DETECTORS: Tuple[ThreatDetector, ...] = (
    # SQL injection
    _detector("sql_keywords", "sql",
              r"\b(?:SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION|TRUNCATE|GRANT|REVOKE)\b"),
    _detector("sql_comment", "sql", r"--|/\*|\*/", 0),
    _detector("sql_tautology_numeric", "sql", r"\s*\b(?:OR|AND)\s*\d+\s*=\s*\d+"),
    _detector("sql_tautology_identifier", "sql", r"\s*\b(?:OR|AND)\s+[a-zA-Z0-9_]+\s*=\s*[a-zA-Z0-9_]+"),
    _detector("sql_time_based", "sql", r"\bWAITFOR\s+DELAY\b|\bSLEEP\b"),
    _detector("sql_dangerous_procedures", "sql",
              r"\bXP_CMDSHELL\b|\bSP_EXECUTESQL\b|\bEXECUTE\s+AS\b|\bRECONFIGURE\b"),
    _detector("sql_file_operations", "sql", r"\bINTO\s+OUTFILE\b|\bLOAD_FILE\b"),
    _detector("sql_type_conversion", "sql", r"\b(?:CAST|CONVERT)\s*\(.*?\s*AS\s*N?VARCHAR\b"),
    _detector("sql_schema_discovery", "sql", r"\bFROM\s+INFORMATION_SCHEMA\b|\bSYSOBJECTS\b|\bPG_CATALOG\b"),
    _detector("sql_order_by_injection", "sql", r"\bORDER\s+BY\s+\d+(?:#|--)"),
    # Cross-site scripting
    _detector("xss_script_tag", "xss", r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    _detector("xss_javascript_uri", "xss", r"javascript:"),
    _detector("xss_event_handler", "xss", r"\bon\w+\s*="),
    _detector("xss_iframe", "xss", r"<iframe[^>]*>.*?</iframe>", re.IGNORECASE | re.DOTALL),
    _detector("xss_css_expression", "xss", r"expression\("),
    _detector("xss_base64_data_uri", "xss", r"data:[^;]*;base64,"),
    # Command injection
    _detector("command_metacharacters", "command", r"\||&|\$\(|`|;", 0),
    _detector("command_destructive", "command", r"rm\s+-rf|del\s+/f|\bformat\s+[a-z]:"),
    _detector("command_remote_fetch", "command", r"\b(?:wget|curl)\s+https?"),
    _detector("command_disclosure", "command", r"\b(?:cat|ls|dir)\s+[-/~.]"),
    _detector("command_shell_name", "command", r"\b(?:SH|BASH|CMD|POWERSHELL)\b", 0),
)


# =============================================================================
# Pattern Tables
# =============================================================================

# Filler words removed as whole words (multi-word fillers match any whitespace)
FILLER_WORDS: Tuple[str, ...] = (
    "um", "uh", "hmm", "err", "ah", "oh",
    "like", "you know", "i mean", "basically", "actually", "literally",
    "sort of", "kind of", "more or less", "pretty much", "so to speak",
    "let me see", "let me think", "how do i put this", "what i mean is",
)

# Verbose phrase -> shorter equivalent. Replacements never produce a filler word.
VERBOSE_PHRASES: Tuple[Tuple[str, str], ...] = (
    (r"\bin order to\b", "to"),
    (r"\bdue to the fact that\b", "because"),
    (r"\bat this point in time\b", "now"),
    (r"\bin the event that\b", "if"),
    (r"\bfor the purpose of\b", "to"),
    (r"\bwith regard to\b", "about"),
    (r"\bin spite of the fact that\b", "although"),
    (r"\bby means of\b", "by"),
    (r"\bin the process of\b", "while"),
    (r"\bas a matter of fact\b", "in fact"),
    (r"\bit goes without saying\b", ""),
    (r"\bneedless to say\b", ""),
    (r"\bthe thing is that\b", ""),
    (r"\bwhat i want to say is\b", ""),
    (r"\bat the end of the day\b", "ultimately"),
    (r"\bfirst and foremost\b", "first"),
    (r"\beach and every\b", "every"),
    (r"\bone and only\b", "only"),
    (r"\bup until\b", "until"),
    (r"\bover and over\b", "repeatedly"),
)

# Doubled intensifiers collapse to the second one
INTENSIFIER_PATTERNS: Tuple[Tuple[str, str], ...] = (
    (r"\b(?:really|very|quite|pretty|fairly|rather|somewhat)\s+(really|very|quite|pretty|fairly|rather|somewhat)\b", r"\1"),
    (r"\b(?:extremely|incredibly|absolutely|totally|completely)\s+(extremely|incredibly|absolutely|totally|completely)\b", r"\1"),
    (r"\babsolutely definitely\b", "definitely"),
)

NARRATIVE_MARKERS: Tuple[str, ...] = (
    "first", "second", "third", "then", "next", "finally", "meanwhile",
    "however", "therefore", "consequently", "moreover", "furthermore",
    "in contrast", "on the other hand", "as a result", "in conclusion",
)

EMOTIONAL_MARKERS: Tuple[str, ...] = (
    "suddenly", "surprisingly", "unfortunately", "fortunately", "clearly",
    "obviously", "apparently", "evidently", "certainly", "definitely",
)

QUESTION_PATTERNS: Tuple[str, ...] = (
    r"\b(?:who|what|when|where|why|how)\b",
    r"\b(?:can|could|would|should|will|shall)\s+\w+",
)

# Sentence-level compression for sentences that carry no markers
COMPRESSION_RULES: Tuple[Tuple[str, str], ...] = (
    (r"\bthere\s+(?:is|are|was|were)\s+(?:(?:a|an|the)\s+)?(\w+)\s+(?:that|who|which|where)\b", r"\1"),
    (r"\b(believe|think|feel|know|realize|understand)\s+that\b", r"\1"),
    (r"\bat the same time\b", "simultaneously"),
    (r"\bduring the time that\b", "while"),
    (r"\bin the course of\b", "during"),
    (r"\b(?:a|an|the)\s+(\w+),\s*(?:a|an|the)\s+(\w+),\s*and\s+(?:a|an|the)\s+(\w+)\b", r"\1, \2, and \3"),
)

WORD_SHORTENINGS: Tuple[Tuple[str, str], ...] = (
    ("utilize", "use"),
    ("demonstrate", "show"),
    ("facilitate", "help"),
    ("accommodate", "fit"),
    ("initiate", "start"),
    ("terminate", "end"),
    ("subsequent", "next"),
    ("previous", "last"),
    ("additional", "more"),
    ("numerous", "many"),
    ("substantial", "large"),
    ("significant", "major"),
    ("approximate", "about"),
    ("equivalent", "equal"),
)

SENTENCE_CLEANUPS: Tuple[Tuple[str, str], ...] = (
    (r"\b(?:that|which|who)\s+(?:is|are|was|were)\b", ""),
    (r"\bto be\b", ""),
    (r"\b(?:very|really|quite|pretty)\s+(\w+)\b", r"\1"),
    (r"\b(?:totally|completely|absolutely)\s+(\w+)\b", r"\1"),
)

# Global pass used when aggressive mode is on or the reduction target was missed
AGGRESSIVE_RULES: Tuple[Tuple[str, str], ...] = (
    (r"\b(?:good|nice|great|awesome|amazing|incredible|fantastic)\s+(good|nice|great|awesome|amazing|incredible|fantastic)\b", r"\1"),
    (r"\b(?:very|really|quite|pretty)\s+(\w+)\b", r"\1"),
    # redundant conjunctions go first so the conversions below can't re-create them
    (r"\band then\b", "then"),
    (r"\bbut however\b", "but"),
    (r"\bso therefore\b", "so"),
    (r"\b(?:in addition to this|furthermore|moreover)\b", "also"),
    (r"\b(?:as a consequence|as a result|therefore)\b", "so"),
    (r"\b(?:in conclusion|to summarize|in summary)\b", "finally"),
    (r"\bmore and more\b", "increasingly"),
    (r"\bless and less\b", "decreasingly"),
    (r"\bagain and again\b", "repeatedly"),
    (r"\bthat\s+", " "),
    (r"\bwhich\s+", " "),
)

# Explicit dangerous substrings removed after markup stripping
DANGEROUS_SUBSTRINGS: Tuple[Tuple[str, str], ...] = (
    (r"\b(?:UNION\s+SELECT|DROP\s+TABLE|DELETE\s+FROM)\b", ""),
    (r"javascript:", ""),
    (r"[|&;`$]\s*\w+", " "),
)

_PUNCTUATION_CHARS = re.compile(r"[.,!?;:()\[\]{}'\"]")
_WHITESPACE_RE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,;:.!?])")
_REPEATED_SEPARATORS_RE = re.compile(r"([,;:])(?:\s*[,;:])+")
_SEPARATOR_BEFORE_TERMINATOR_RE = re.compile(r"[,;:]+\s*([.!?])")
_SPACE_BETWEEN_TERMINATORS_RE = re.compile(r"([.!?])\s+(?=[.!?])")
_LEADING_SEPARATORS_RE = re.compile(r"^[\s,;:]+")
_SENTENCE_SPLIT_RE = re.compile(r"([.!?]+|\n+)")
_SCRIPT_BLOCK_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_MARKUP_TAG_RE = re.compile(r"<!--.*?-->|</?[a-zA-Z][^>]*>", re.DOTALL)


def _compile(rules: Sequence[Tuple[str, Replacement]], flags: int = re.IGNORECASE) -> List[Tuple[Pattern[str], Replacement]]:
    return [(re.compile(pattern, flags), replacement) for pattern, replacement in rules]


def _apply(rules: Sequence[Tuple[Pattern[str], Replacement]], text: str) -> str:
    for pattern, replacement in rules:
        text = pattern.sub(replacement, text)
    return text


def _keep_case(replacement: str) -> Callable[[re.Match], str]:
    """Build a substitution that capitalizes the replacement like the match."""
    def substitute(match: re.Match) -> str:
        if match.group(0)[:1].isupper():
            return replacement[:1].upper() + replacement[1:]
        return replacement
    return substitute


def _marker_pattern(markers: Sequence[str]) -> Pattern[str]:
    alternatives = sorted((re.escape(m).replace(r"\ ", r"\s+") for m in markers), key=len, reverse=True)
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b", re.IGNORECASE)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def tidy_spacing(text: str) -> str:
    """Collapse whitespace and fix spacing and duplication around punctuation."""
    text = _WHITESPACE_RE.sub(" ", text)
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    text = _REPEATED_SEPARATORS_RE.sub(r"\1", text)
    text = _SEPARATOR_BEFORE_TERMINATOR_RE.sub(r"\1", text)
    text = _SPACE_BETWEEN_TERMINATORS_RE.sub(r"\1", text)
    text = _LEADING_SEPARATORS_RE.sub("", text)
    return text.strip()


def estimate_tokens(text: str) -> TextStats:
    """
    Estimate how many model tokens a text costs.

    Words of up to 4 characters count as 1 unit, up to 8 characters as 1.2,
    longer words as ceil(length / 4). Each punctuation character adds 0.7.
    For exact counts use a real tokenizer; this is only a cheap heuristic.
    """
    words = text.split()
    units = 0.0
    for word in words:
        if len(word) <= 4:
            units += 1
        elif len(word) <= 8:
            units += 1.2
        else:
            units += math.ceil(len(word) / 4)
        units += len(_PUNCTUATION_CHARS.findall(word)) * 0.7

    return TextStats(
        characters=len(text),
        words=len(words),
        estimated_tokens=_round_half_up(units),
        token_density=round(units / len(text) * 100, 2) if text else 0.0,
    )


class TextPreprocessor:
    """Cleans, compresses and screens answer text for the feedback prompt."""

    def __init__(self, detectors: Optional[Sequence[ThreatDetector]] = None):
        self.detectors: Tuple[ThreatDetector, ...] = tuple(
            DEFAULT_THREAT_DETECTORS if detectors is None else detectors
        )
        self._fillers = _marker_pattern(FILLER_WORDS)
        self._verbose_phrases = _compile(VERBOSE_PHRASES)
        self._intensifiers = _compile(INTENSIFIER_PATTERNS)
        self._narrative_markers = _marker_pattern(NARRATIVE_MARKERS)
        self._emotional_markers = _marker_pattern(EMOTIONAL_MARKERS)
        self._question_patterns = [re.compile(p, re.IGNORECASE) for p in QUESTION_PATTERNS]
        self._compression_rules = _compile(COMPRESSION_RULES)
        self._word_shortenings = [
            (re.compile(rf"\b{word}\b", re.IGNORECASE), _keep_case(short))
            for word, short in WORD_SHORTENINGS
        ]
        self._sentence_cleanups = _compile(SENTENCE_CLEANUPS)
        self._aggressive_rules = _compile(AGGRESSIVE_RULES)
        self._dangerous_substrings = _compile(DANGEROUS_SUBSTRINGS, re.IGNORECASE | re.DOTALL)

    # -------------------------------------------------------------------------
    # Security
    # -------------------------------------------------------------------------

    def detect_security_threats(self, text: str) -> SecurityFindings:
        """Run every detector over the text and collect what matched."""
        findings = SecurityFindings()
        for detector in self.detectors:
            matches = detector.find(text)
            if not matches:
                continue
            bucket = getattr(findings, detector.category, None)
            if bucket is None:
                logger.warning(f"Detector {detector.name} has unknown category {detector.category!r}")
                continue
            bucket.extend(matches)
            findings.detectors.append(detector.name)
        return findings

    def sanitize_for_security(self, text: str) -> str:
        """
        Strip markup and known injection fragments, then HTML-escape.

        Escaping runs last so that the shell-metacharacter rule can't eat
        the entities it produces. Quotes are left alone since no markup
        survives to put them in an attribute.

        Not idempotent: run it once, on raw input. The output can contain
        entities such as ``&lt;``, and on a second pass their ``&`` and ``;``
        trigger the command detector and the metacharacter rule removes the
        entity: ``"SELECT x &lt; 5 -rf /"`` comes back as ``"SELECT x -rf /"``
        once spacing is tidied.
        """
        text = _SCRIPT_BLOCK_RE.sub("", text)
        text = _MARKUP_TAG_RE.sub("", text)
        text = _apply(self._dangerous_substrings, text)
        return html.escape(text, quote=False)

    # -------------------------------------------------------------------------
    # Noise removal and compression
    # -------------------------------------------------------------------------

    def remove_noise(self, text: str) -> str:
        """Drop fillers, shorten verbose phrases, collapse doubled intensifiers."""
        text = unicodedata.normalize("NFKC", text)
        text = self._fillers.sub(" ", text)
        text = _apply(self._verbose_phrases, text)
        text = _apply(self._intensifiers, text)
        return tidy_spacing(text)

    def is_important_sentence(self, sentence: str) -> bool:
        """Questions, narrative connectors and emotional markers are kept verbatim."""
        if any(p.search(sentence) for p in self._question_patterns):
            return True
        return bool(self._narrative_markers.search(sentence) or self._emotional_markers.search(sentence))

    def optimize_sentence(self, sentence: str) -> str:
        """Compress a single low-information sentence."""
        sentence = _apply(self._compression_rules, sentence)
        sentence = _apply(self._word_shortenings, sentence)
        sentence = _apply(self._sentence_cleanups, sentence)
        return _WHITESPACE_RE.sub(" ", sentence).strip()

    def compress_preserving_structure(self, text: str) -> str:
        """Split into sentences and compress only the ones that carry no markers."""
        parts = _SENTENCE_SPLIT_RE.split(text)
        pieces: List[str] = []
        for i in range(0, len(parts), 2):
            body = parts[i].strip()
            end = parts[i + 1] if i + 1 < len(parts) else ""
            if body:
                if self.is_important_sentence(body):
                    body = _WHITESPACE_RE.sub(" ", body)
                else:
                    body = self.optimize_sentence(body)
                pieces.append(body + end)
            elif end.strip():
                if pieces:
                    pieces[-1] += end
                else:
                    pieces.append(end)
        return tidy_spacing(" ".join(pieces))

    def apply_aggressive_optimization(self, text: str) -> str:
        """Global pass: strip intensifiers, simplify clauses and conjunctions."""
        return tidy_spacing(_apply(self._aggressive_rules, text))

    # -------------------------------------------------------------------------
    # Length enforcement
    # -------------------------------------------------------------------------

    @staticmethod
    def truncate(text: str, max_length: int) -> str:
        """
        Cut text down to max_length.

        Prefers the last sentence end within the final 20% of the limit;
        otherwise cuts at the last space and appends "...". Without any
        space the text is cut at max_length and "..." appended.
        """
        if len(text) <= max_length:
            return text

        truncated = text[:max_length]
        last_sentence_end = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
        if last_sentence_end >= max_length * 0.8:
            return truncated[:last_sentence_end + 1]

        last_space = truncated.rfind(" ")
        if last_space > 0:
            return truncated[:last_space].rstrip() + "..."

        return truncated + "..."

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def preprocess(self, text: Optional[str], options: Optional[PreprocessOptions] = None) -> PreprocessResult:
        """
        Run the full preprocessing pipeline.

        Stages run strictly in order: threat detection, sanitization (only
        when something matched), noise removal, structure-preserving
        compression, the conditional aggressive pass and length enforcement.

        Args:
            text: Raw answer text (may be empty or None)
            options: Length limit, reduction target and aggressive flag

        Returns:
            PreprocessResult with the processed text, findings and stats
        """
        options = options or PreprocessOptions()

        if not text or not text.strip():
            return PreprocessResult(
                processed_text="",
                security_findings=SecurityFindings(),
                original_stats=TextStats(),
                processed_stats=TextStats(),
                reduction_percent=0,
                compression_ratio_percent=0,
                warnings=["Empty input"],
                applied_optimizations=[],
            )

        original_stats = estimate_tokens(text)
        warnings: List[str] = []
        optimizations: List[str] = []
        findings = SecurityFindings()
        processed = text

        try:
            # Step 1: Threat detection
            findings = self.detect_security_threats(processed)

            # Step 2: Sanitization
            if findings.has_threats:
                logger.warning(f"Security patterns matched in answer text: {', '.join(findings.detectors)}")
                processed = self.sanitize_for_security(processed)
                warnings.append("Security threats detected and sanitized.")
                optimizations.append("Security sanitization applied.")

            # Step 3: Noise removal
            before = len(processed)
            processed = self.remove_noise(processed)
            if len(processed) < before * 0.95:
                optimizations.append("Filler words and verbose phrases removed.")

            # Step 4: Structure-preserving compression
            before = len(processed)
            processed = self.compress_preserving_structure(processed)
            if len(processed) < before * 0.98:
                optimizations.append("Sentence structure and redundancy optimized.")

            # Step 5: Conditional aggressive pass
            current_tokens = estimate_tokens(processed).estimated_tokens
            current_reduction = (
                (original_stats.estimated_tokens - current_tokens) / original_stats.estimated_tokens
                if original_stats.estimated_tokens > 0 else 0.0
            )
            if options.aggressive or current_reduction < options.target_reduction_ratio:
                before = len(processed)
                processed = self.apply_aggressive_optimization(processed)
                if len(processed) < before:
                    optimizations.append("Aggressive token optimization applied.")
        except Exception as e:
            logger.error(f"Answer preprocessing failed, falling back to raw text: {e}", exc_info=True)
            warnings.append("Preprocessing failed; original text used.")
            processed = text.strip()

        # Step 6: Length enforcement
        before = len(processed)
        processed = self.truncate(processed, options.max_length)
        if len(processed) < before:
            warnings.append(f"Content truncated to {options.max_length} characters.")

        processed = processed.strip()
        processed_stats = estimate_tokens(processed)

        reduction = (
            (original_stats.estimated_tokens - processed_stats.estimated_tokens)
            / original_stats.estimated_tokens * 100
            if original_stats.estimated_tokens > 0 else 0.0
        )
        compression = (
            processed_stats.characters / original_stats.characters * 100
            if original_stats.characters > 0 else 100.0
        )

        if original_stats.estimated_tokens > 50:
            if reduction < 10:
                warnings.append("Low token reduction achieved - consider more aggressive optimization settings.")
            elif reduction > 60:
                warnings.append("High token reduction - please verify content integrity (may be overly optimized).")

        return PreprocessResult(
            processed_text=processed,
            security_findings=findings,
            original_stats=original_stats,
            processed_stats=processed_stats,
            reduction_percent=_round_half_up(reduction),
            compression_ratio_percent=_round_half_up(compression),
            warnings=warnings,
            applied_optimizations=optimizations,
        )


# Default instance (stateless, safe to share)
text_preprocessor = TextPreprocessor()
