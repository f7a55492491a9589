"""Direct-API tool-use loop built on LangGraph."""
