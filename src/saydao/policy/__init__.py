"""DAO parameter loading."""
