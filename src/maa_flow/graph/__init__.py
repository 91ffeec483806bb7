"""Flow-run state machine built on LangGraph."""
