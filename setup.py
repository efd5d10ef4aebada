from setuptools import setup, find_packages


setup(
    name='mogpsf',
    version='0.1.0',
    description='Fit mixtures of 2D Gaussians to pixelized point spread functions',
    packages=find_packages(include=['mogpsf', 'mogpsf.*']),
    python_requires='>=3.10',
    install_requires=[
        'numpy',
        'scipy',
        'opencv-python',
        'jax',
    ],
    extras_require={
        'test': ['pytest'],
        'examples': ['matplotlib'],
    },
)
