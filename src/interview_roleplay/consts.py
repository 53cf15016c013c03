DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000
DEFAULT_RELOAD = False

SERVICE_NAME = "InterviewRoleplay"

DEFAULT_END_MARKER = "[INTERVIEW_END]"
DEFAULT_ABORT_MARKER = "[INTERVIEW_ABORT]"

# Legacy clients address the two agents by slot instead of role.
LEGACY_SOURCE_INTERVIEWER = "ai_a"
LEGACY_SOURCE_CANDIDATE = "ai_b"
LEGACY_SOURCE_HUMAN = "human"
