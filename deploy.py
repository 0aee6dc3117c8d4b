# deploy.py
# Deployments for the wallet contracts: the factory is constructed with the
# wallet implementation address, so it always goes second.
from __future__ import annotations

from chaindeploy import address_of, contract_step, deployment

SALT = "0x7061796d61676963"


def steps():
    return deployment(
        contract_step("Wallet", salt=SALT),
        contract_step(
            "WalletFactory",
            args=[address_of("Wallet")],
            salt=SALT,
        ),
    )
