from __future__ import annotations

from typing import Dict, List

import numpy as np

from .classes import ClassKind, EpidemicClass
from .interventions import Intervention
from .parameters import resolve


class TransmissionEngine:
    """
    Force of infection per class and pathogen.

    Populations are pooled by contact-matrix row (mixing group), so classes
    sharing a row mix as one group. Contact matrices are built once per
    trajectory for every on/off combination of the contact-affecting
    interventions.
    """

    def __init__(self, base_matrices: List[List[List[float]]], classes: List[EpidemicClass],
                 interventions: List[Intervention]):
        self.base = np.asarray(base_matrices, dtype=float)
        self.n_pathogens = self.base.shape[0] if self.base.size else 0
        self.n_groups = self.base.shape[1] if self.base.size else 1
        self.classes = classes
        self.contact_interventions = [i for i in interventions if i.affects_contacts]
        self.rows = np.array([c.contact_row for c in classes], dtype=int)
        self.normal = np.array([c.kind == ClassKind.NORMAL for c in classes], dtype=bool)

    def build_contact_matrices(self, values: Dict[str, float]) -> Dict[int, np.ndarray]:
        """Contact matrices keyed by the code of the on contact-affecting interventions."""
        changes = [
            np.array([[[resolve(values, x) for x in row] for row in m] for m in i.contact_change], dtype=float)
            for i in self.contact_interventions
        ]
        matrices: Dict[int, np.ndarray] = {}
        for code in range(2 ** len(self.contact_interventions)):
            matrix = self.base.copy()
            for j, change in enumerate(changes):
                if (code >> j) & 1:
                    matrix = matrix * (1.0 + change)
            matrices[code] = np.clip(matrix, 0.0, None)
        return matrices

    def contact_code(self, in_effect: np.ndarray) -> int:
        return int(sum(int(in_effect[i.index]) << j for j, i in enumerate(self.contact_interventions)))

    def normal_counts(self) -> np.ndarray:
        return np.array([c.members if self.normal[k] else 0 for k, c in enumerate(self.classes)], dtype=float)

    def group_populations(self) -> np.ndarray:
        """Members per mixing group."""
        return np.bincount(self.rows, weights=self.normal_counts(), minlength=self.n_groups)

    def compute_rates(self, contact_matrices: Dict[int, np.ndarray], in_effect: np.ndarray) -> np.ndarray:
        """Rates of shape (n_classes, n_pathogens); empty mixing groups contribute zero."""
        n_classes = len(self.classes)
        rates = np.zeros((n_classes, self.n_pathogens))
        if self.n_pathogens == 0:
            return rates

        counts = self.normal_counts()
        row_pop = self.group_populations()[self.rows]
        fraction = np.divide(counts, row_pop, out=np.zeros(n_classes), where=row_pop > 0)

        susceptibility = np.array([c.susceptibility for c in self.classes])
        infectivity = np.array([c.infectivity for c in self.classes])
        contact = contact_matrices[self.contact_code(in_effect)]

        for p in range(self.n_pathogens):
            mixing = contact[p][np.ix_(self.rows, self.rows)]
            pressure = mixing @ (infectivity[:, p] * fraction)
            rates[:, p] = np.where(self.normal, susceptibility[:, p] * pressure, 0.0)
        return rates

    def update_transmission_rates(self, contact_matrices: Dict[int, np.ndarray], in_effect: np.ndarray) -> np.ndarray:
        rates = self.compute_rates(contact_matrices, in_effect)
        for k, cls in enumerate(self.classes):
            if self.normal[k]:
                cls.update_transmission_rates(rates[k])
        return rates
