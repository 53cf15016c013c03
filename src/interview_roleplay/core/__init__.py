from interview_roleplay.core.types import Role, Target, Phase, Mode, EndReason, Pattern, JapaneseLevel
from interview_roleplay.core.turns import TurnStateMachine, TurnState
from interview_roleplay.core.transcript import TranscriptLog, TranscriptEntry
from interview_roleplay.core.events import normalize_event, should_log
from interview_roleplay.core.patterns import PatternConfig, PATTERNS, get_pattern_config
