"""Privacy notice and user-facing analytics messages.

Bump PRIVACY_NOTICE_VERSION whenever the notice changes in a way users must
re-approve; consent recorded under an older version then needs re-consent.
"""

from __future__ import annotations

PRIVACY_NOTICE_VERSION = "1.0.0"

PRIVACY_SUMMARY = "Analytics record which tools ran, never what you sent them. Data stays on this machine."

PRIVACY_NOTICE_BRIEF = """\
think-mcp can keep anonymous usage analytics on this machine.

Recorded:
  - Which tool ran (trace, model, pattern, ...)
  - Whether it succeeded, and an error category if not
  - How long it took

Never recorded:
  - Tool arguments or any content you send
  - Error messages or stack traces
  - Personal or machine identifiers

Nothing leaves your machine. Default retention: 90 days.
Opt out at any time with: think-mcp analytics disable"""

PRIVACY_NOTICE_FULL = """\
================================================================================
                           THINK-MCP PRIVACY NOTICE
================================================================================

Analytics are off unless you opt in. When enabled, think-mcp records one small
metadata event per tool invocation so you can see how the tools are used.

DATA RECORDED (metadata only):
  - Tool name (trace, model, pattern, paradigm, debug, council, ...)
  - Timestamp of the invocation
  - Success or failure
  - Duration in milliseconds
  - Error category (validation/runtime/timeout/unknown), never the message
  - A random session id generated per server process

DATA NEVER RECORDED:
  - Tool arguments or input content
  - Error messages or stack traces
  - Usernames, hostnames, IP addresses or machine ids
  - File paths or file contents

STORAGE:
  - Location: ~/.think-mcp/analytics/ (configurable)
  - Format: one JSON file per day
  - Retention: 90 days (configurable), older files are deleted automatically
  - Nothing is transmitted over the network

YOUR CONTROLS:
  - Enable:  think-mcp analytics enable
  - Disable: think-mcp analytics disable [--delete-data]
  - Status:  think-mcp analytics status
  - Export:  think-mcp analytics export
  - Delete:  think-mcp analytics clear

================================================================================"""

ANALYTICS_ENABLED_MESSAGE = """\
Analytics enabled.

Data is stored locally in the analytics storage directory.
Disable at any time with: think-mcp analytics disable"""

ANALYTICS_DISABLED_MESSAGE = """\
Analytics disabled. No usage data will be recorded.

To enable again: think-mcp analytics enable"""

ANALYTICS_DISABLED_WITH_DATA_DELETED_MESSAGE = """\
Analytics disabled and all recorded data has been deleted.

To enable again: think-mcp analytics enable"""

RECONSENT_PROMPT = f"""\
The privacy notice has changed since you enabled analytics.

{PRIVACY_NOTICE_BRIEF}

Keep analytics enabled?"""

DATA_COLLECTION_TABLE = """\
+------------------+-------------------------------------------+
| Field            | Meaning                                   |
+------------------+-------------------------------------------+
| toolName         | Which tool ran (e.g. 'trace')             |
| timestamp        | When it ran                               |
| success          | Whether it succeeded                      |
| durationMs       | How long it took                          |
| errorCategory    | Kind of failure, never the message        |
| sessionId        | Random per-process id                     |
+------------------+-------------------------------------------+"""

CLI_QUICK_REFERENCE = """\
  think-mcp analytics enable    Opt in
  think-mcp analytics disable   Opt out (--delete-data removes recorded data)
  think-mcp analytics status    Show settings and storage usage
  think-mcp analytics export    Export recorded events (json or csv)
  think-mcp analytics clear     Delete all recorded data"""
