from setuptools import setup, find_namespace_packages

setup(
    name="aws-k8s-mongodb-infra",
    version="0.1.0",
    packages=find_namespace_packages(include=["infrastructure", "infrastructure.*"]),
    package_data={"infrastructure": ["assets/*"]},
    install_requires=[
        "aws-cdk-lib>=2.180.0",
        "constructs>=10.0.0",
        "aws-cdk.aws-eks-v2-alpha>=2.180.0a0",
        "aws-cdk.lambda-layer-kubectl-v32>=2.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    python_requires=">=3.9",
)
