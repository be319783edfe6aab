"""Turn bank SMS and emails into deduplicated transactions and holdings."""
