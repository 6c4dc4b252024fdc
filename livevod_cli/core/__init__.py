"""
Core download engine.

The `DownloadScheduler` owns the queue and the concurrency limit and admits
jobs in submission order, handing each admitted job to a `JobSupervisor`
that drives it to a terminal status. Observers follow along on the
`EventBus`.
"""
