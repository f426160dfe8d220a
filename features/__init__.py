"""
Features package — self-contained capabilities the pipeline builds on.

  features/ledger/     — run and stage-result records (Postgres + JSON run logs)
  features/processes/  — lifecycle of the locally started application
"""
