from xerus.scheduler.ap_scheduler import XerusScheduler

__all__ = ["XerusScheduler"]
