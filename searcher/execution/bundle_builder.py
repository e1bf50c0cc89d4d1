"""
Bundle assembly: turns an admitted opportunity into an ordered, signed,
atomic group of transactions with a relay tip at the end.
"""

import uuid
from typing import Dict, List, Sequence, Set, Tuple

from searcher.amm.instructions import (
    set_compute_unit_limit,
    set_compute_unit_price,
    transfer_instruction,
)
from searcher.config import SearcherConfig
from searcher.errors import Unbuildable
from searcher.logger import get_logger
from searcher.models import Bundle, Instruction, ScoredOpportunity, SignedTransaction, Transaction
from searcher.signing import BaseSigner


logger = get_logger("bundle_builder")


class BundleBuilder:
    """
    Builds bundles for admitted opportunities.

    Layout: one transaction per opportunity instruction, in dependency
    order, with the compute budget instructions prepended to the first one,
    followed by a tip transaction. The tip transaction counts toward the
    relay's maximum bundle size.
    """

    def __init__(self, config: SearcherConfig, signer: BaseSigner):
        self.config = config.bundle
        self.staleness_tolerance = config.engine.staleness_tolerance_slots
        self.signer = signer

        self._built = 0
        self._unbuildable = 0

    def build(self, scored: ScoredOpportunity) -> Bundle:
        """
        Assemble and sign a bundle.

        Raises:
            Unbuildable: too many instructions, broken or cyclic
                dependencies, self-conflicting writes, or no room for a tip
        """
        try:
            bundle = self._build(scored)
        except Unbuildable as e:
            self._unbuildable += 1
            logger.warning(
                "Opportunity unbuildable",
                opportunity_id=scored.opportunity_id,
                detector=scored.opportunity.detector_id,
                error=str(e),
            )
            raise

        self._built += 1
        return bundle

    def _build(self, scored: ScoredOpportunity) -> Bundle:
        opportunity = scored.opportunity
        instructions = opportunity.instructions

        if not instructions:
            raise Unbuildable("opportunity has no instructions")
        if len(instructions) + 1 > self.config.max_bundle_size:
            raise Unbuildable(
                f"{len(instructions)} instructions plus tip exceed "
                f"max bundle size {self.config.max_bundle_size}"
            )

        ordered = self.order_instructions(instructions)
        # Positional labels refer to emission order
        self.check_conflicts(instructions)
        tip = self.size_tip(scored)

        payer = self.signer.pubkey
        compute_budget = (
            set_compute_unit_limit(self.config.compute_unit_limit),
            set_compute_unit_price(self.config.compute_unit_price),
        )

        transactions: List[Transaction] = []
        for index, instruction in enumerate(ordered):
            prefix = compute_budget if index == 0 else ()
            transactions.append(Transaction(instructions=prefix + (instruction,), fee_payer=payer))
        transactions.append(
            Transaction(
                instructions=(transfer_instruction(payer, self.config.tip_account, tip),),
                fee_payer=payer,
            )
        )

        signed = tuple(
            SignedTransaction(transaction=tx, payload=self.signer.sign_transaction(tx))
            for tx in transactions
        )

        return Bundle(
            bundle_id=f"bundle_{uuid.uuid4().hex[:12]}",
            scored=scored,
            transactions=signed,
            tip_lamports=tip,
            target_slot=opportunity.slot + 1,
            expires_at_slot=opportunity.slot + self.staleness_tolerance,
        )

    def size_tip(self, scored: ScoredOpportunity) -> int:
        """Tip from the scorer's estimate, bounded by max_tip_fraction of gross profit."""
        gross = scored.gross_profit
        cap = int(gross * self.config.max_tip_fraction)
        tip = min(max(scored.estimated_tip, self.config.min_tip_lamports), cap)
        if tip <= 0 or tip >= gross:
            raise Unbuildable(f"no room for a tip (gross profit {gross}, tip cap {cap})")
        return tip

    @staticmethod
    def _labels(instructions: Sequence[Instruction]) -> List[str]:
        labels = [ix.label or f"#{i}" for i, ix in enumerate(instructions)]
        if len(set(labels)) != len(labels):
            raise Unbuildable("duplicate instruction labels")
        return labels

    def order_instructions(self, instructions: Sequence[Instruction]) -> Tuple[Instruction, ...]:
        """
        Stable topological sort on depends_on.

        Instructions without constraints between them keep emission order.
        """
        labels = self._labels(instructions)
        known = set(labels)
        for ix in instructions:
            unknown = [dep for dep in ix.depends_on if dep not in known]
            if unknown:
                raise Unbuildable(f"unknown dependency {unknown[0]!r}")

        placed: Set[str] = set()
        ordered: List[Instruction] = []
        remaining = list(zip(labels, instructions))
        while remaining:
            for position, (label, ix) in enumerate(remaining):
                if all(dep in placed for dep in ix.depends_on):
                    ordered.append(ix)
                    placed.add(label)
                    del remaining[position]
                    break
            else:
                raise Unbuildable("cyclic instruction dependencies")
        return tuple(ordered)

    def check_conflicts(self, instructions: Sequence[Instruction]) -> None:
        """
        Reject two instructions that write the same non-signer account
        without a dependency ordering them.

        Expects instructions in emission order, already checked for unknown
        and cyclic dependencies by order_instructions.
        """
        labels = self._labels(instructions)
        ancestors = self._ancestors(labels, instructions)

        for i in range(len(instructions)):
            for j in range(i + 1, len(instructions)):
                shared = instructions[i].writable_accounts & instructions[j].writable_accounts
                if not shared:
                    continue
                ordered = labels[i] in ancestors[labels[j]] or labels[j] in ancestors[labels[i]]
                if not ordered:
                    raise Unbuildable(
                        f"{labels[i]!r} and {labels[j]!r} both write {sorted(shared)[0]} "
                        f"without an ordering dependency"
                    )

    @staticmethod
    def _ancestors(labels: Sequence[str], instructions: Sequence[Instruction]) -> Dict[str, Set[str]]:
        direct = {label: set(ix.depends_on) for label, ix in zip(labels, instructions)}
        closure: Dict[str, Set[str]] = {}

        def visit(label: str) -> Set[str]:
            if label not in closure:
                closure[label] = set()
                result = set()
                for dep in direct[label]:
                    result.add(dep)
                    result |= visit(dep)
                closure[label] = result
            return closure[label]

        for label in labels:
            visit(label)
        return closure

    @property
    def metrics(self) -> dict:
        return {
            "built": self._built,
            "unbuildable": self._unbuildable,
        }
