"""Task graph executor for agent-backed units of work.

A submitted graph is validated, registered as a job in the job store and then
driven round by round on its own thread: every task whose dependencies have
completed is dispatched concurrently, the round is awaited as a whole, and the
first failure fails the job. Cancellation is cooperative and observed between
rounds, so an in-flight agent call is never interrupted.
"""
