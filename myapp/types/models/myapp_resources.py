class MyAppResources:
    """Encapsulates the naming scheme used for the resources which the operator
    manages for a MyApp of the given name."""

    @classmethod
    def deployment_name(self, app_name: str):
        """Returns the name of the workload `Deployment` for an app of the given name."""
        return f"{app_name}-deployment"

    @classmethod
    def service_name(self, app_name: str):
        """Returns the name of the endpoint `Service` for an app of the given name."""
        return f"{app_name}-service"
