from typing import Dict


class ResourceLabels:
    MYAPP_DOMAIN: str = "example.com/"

    APP_LABEL = "app"

    MYAPP_KIND_LABEL = MYAPP_DOMAIN + "kind"


class Labels(ResourceLabels):
    KUBERNETES_DOMAIN = "app.kubernetes.io/"

    KUBERNETES_NAME_LABEL = KUBERNETES_DOMAIN + "name"

    KUBERNETES_INSTANCE_LABEL = KUBERNETES_DOMAIN + "instance"

    KUBERNETES_PART_OF_LABEL = KUBERNETES_DOMAIN + "part-of"

    APPLICATION_NAME = "myapp"

    KUBERNETES_MANAGED_BY_LABEL = KUBERNETES_DOMAIN + "managed-by"

    _labels: Dict[str, str]

    def __init__(self, labels: Dict[str, str] = None) -> None:
        self._labels = labels if labels else dict()

    def update(self, labels: Dict[str, str]) -> "Labels":
        self._labels.update(labels.copy())
        return self

    def as_dict(self) -> Dict[str, str]:
        """Return labels are dictionary."""
        return self._labels.copy()

    def include(self, label: str, value: str) -> "Labels":
        self.update({label: value})
        return self

    def include_app(self, name: str) -> "Labels":
        return self.include(self.APP_LABEL, name)

    def include_myapp_kind(self, kind: str) -> "Labels":
        return self.include(self.MYAPP_KIND_LABEL, kind)

    def include_kubernetes_name(self, name: str) -> "Labels":
        return self.include(self.KUBERNETES_NAME_LABEL, name)

    def include_kubernetes_instance(self, instance_name: str) -> "Labels":
        return self.include(self.KUBERNETES_INSTANCE_LABEL, instance_name)

    def include_kubernetes_part_of(self, instance_name: str) -> "Labels":
        return self.include(
            self.KUBERNETES_PART_OF_LABEL,
            self.get_or_valid_instance_label_value(
                f"{self.APPLICATION_NAME}-{instance_name}"
            ),
        )

    def get_or_valid_instance_label_value(self, instance: str):
        """Validates the instance name and if needed modifies it to make it a valid Label value:
        * (([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?
        * 63 characters max
        """
        if not instance:
            return ""
        value = instance[:63]
        return value.rstrip(".-_")

    def include_kubernetes_managed_by(self, operator_name: str) -> "Labels":
        return self.include(self.KUBERNETES_MANAGED_BY_LABEL, operator_name)

    def selector(self) -> "Labels":
        """Labels used to select the pods of an app."""
        return Labels({self.APP_LABEL: self._labels[self.APP_LABEL]})

    def __str__(self):
        return f"Labels<{self._labels}>"

    @classmethod
    def generate_default_labels(
        cls,
        app_name: str,
        resource_kind: str,
        managed_by: str,
    ) -> "Labels":
        labels = Labels()
        return (
            labels.include_app(app_name)
            .include_myapp_kind(resource_kind)
            .include_kubernetes_name(cls.APPLICATION_NAME)
            .include_kubernetes_instance(app_name)
            .include_kubernetes_part_of(app_name)
            .include_kubernetes_managed_by(managed_by)
        )
