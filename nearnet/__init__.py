"""nearnet: a NEAR contract helper test topology on docker.

Provisions, in order:
 - a postgres database for the contract helper (and creates its databases)
 - a nearup localnet node
 - the contract helper, wired to both

Each step waits for what it depends on; the first failure stops the run.
"""
