"""
Indexer Module
==============

Assigns every bus and branch of a network a dense integer index.

Buses are enumerated in ascending order of their bus number, branches in
the order the network accessor returns them. The resulting lookups are the
only link between the numeric arrays of PowerFlowData and the network model.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from network.accessor import NetworkAccessor


@dataclass(frozen=True)
class NetworkIndex:
    """
    Bidirectional bus and branch lookups of a network.

    Attributes
    ----------
    bus_lookup : Dict[int, int]
        Bus number -> dense bus index in [0, n_buses).
    bus_numbers : List[int]
        Bus number of each dense bus index.
    bus_names : List[str]
        Bus name of each dense bus index.
    bus_name_lookup : Dict[str, int]
        Bus name -> dense bus index.
    branch_lookup : Dict[str, int]
        Branch name -> dense branch index in [0, n_branches).
    branch_names : List[str]
        Branch name of each dense branch index.
    branch_types : List[type]
        Device kind (concrete class) of each branch.
    branch_from : List[int]
        Dense index of the from-bus of each branch.
    branch_to : List[int]
        Dense index of the to-bus of each branch.
    """
    bus_lookup: Dict[int, int]
    bus_numbers: List[int]
    bus_names: List[str]
    bus_name_lookup: Dict[str, int]
    branch_lookup: Dict[str, int] = field(default_factory=dict)
    branch_names: List[str] = field(default_factory=list)
    branch_types: List[type] = field(default_factory=list)
    branch_from: List[int] = field(default_factory=list)
    branch_to: List[int] = field(default_factory=list)

    @property
    def n_buses(self) -> int:
        """Return the number of buses."""
        return len(self.bus_numbers)

    @property
    def n_branches(self) -> int:
        """Return the number of branches."""
        return len(self.branch_names)

    def bus_index(self, bus_number: int) -> int:
        """
        Return the dense index of a bus number.

        Raises
        ------
        ValueError
            If the bus number is not part of the network.
        """
        try:
            return self.bus_lookup[bus_number]
        except KeyError:
            raise ValueError(
                f"Bus number {bus_number} is not part of the network."
            ) from None


def index_network(network: NetworkAccessor) -> NetworkIndex:
    """
    Build the bus and branch lookups of a network.

    Parameters
    ----------
    network : NetworkAccessor
        Network to index.

    Returns
    -------
    index : NetworkIndex
        Dense bus and branch lookups.

    Raises
    ------
    ValueError
        If the network has no buses, bus numbers or names or branch names are
        not unique, or a branch connects to a bus outside the network.
    """
    buses = sorted(network.buses(), key=lambda b: b.number)
    if not buses:
        raise ValueError("Network has no buses.")

    bus_lookup: Dict[int, int] = {}
    bus_name_lookup: Dict[str, int] = {}
    for ix, bus in enumerate(buses):
        if bus.number in bus_lookup:
            raise ValueError(f"Duplicate bus number {bus.number}.")
        if bus.name in bus_name_lookup:
            raise ValueError(f"Duplicate bus name '{bus.name}'.")
        bus_lookup[bus.number] = ix
        bus_name_lookup[bus.name] = ix

    index = NetworkIndex(
        bus_lookup=bus_lookup,
        bus_numbers=[b.number for b in buses],
        bus_names=[b.name for b in buses],
        bus_name_lookup=bus_name_lookup,
    )

    for ix, branch in enumerate(network.branches()):
        if branch.name in index.branch_lookup:
            raise ValueError(f"Duplicate branch name '{branch.name}'.")
        index.branch_lookup[branch.name] = ix
        index.branch_names.append(branch.name)
        index.branch_types.append(type(branch))
        index.branch_from.append(index.bus_index(branch.from_bus.number))
        index.branch_to.append(index.bus_index(branch.to_bus.number))

    return index
