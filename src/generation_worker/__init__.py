from generation_worker.worker import GenerationWorker, PageJob, PageResult

__all__ = ["GenerationWorker", "PageJob", "PageResult"]
