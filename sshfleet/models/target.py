"""Host range data models."""

from dataclasses import dataclass

DEFAULT_HOST_TEMPLATE = "{cluster}-{index:04d}"


@dataclass
class HostRange:
    """Maps fan-out indices to host names of a named cluster."""

    cluster: str
    template: str = DEFAULT_HOST_TEMPLATE

    def host(self, index: int) -> str:
        """Resolve an index to a host name.

        Examples:
            >>> HostRange("denim").host(3)
            'denim-0003'
        """
        return self.template.format(cluster=self.cluster, index=index)

    def __call__(self, index: int) -> str:
        return self.host(index)
