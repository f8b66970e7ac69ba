from llm_reliability.client.enhanced_client import EnhancedClient, PerformanceDashboard

__all__ = ["EnhancedClient", "PerformanceDashboard"]
