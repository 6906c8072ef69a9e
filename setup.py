from setuptools import setup


setup(name='blockcg',
      packages=['blockcg'],
      version='0.1.0',
      description='Block conjugate gradient solver manager for linear systems '
                  'with multiple right hand sides',
      long_description=open('README.md').read(),
      long_description_content_type="text/markdown",
      install_requires=['numpy (>=1.17)', 'scipy (>=1.0)'],
      extras_require={'test': ['pytest']},
      python_requires=">=3.6",
      classifiers=[
          'Development Status :: 4 - Beta',
          'Intended Audience :: Science/Research',
          'License :: OSI Approved :: MIT License',
          'Operating System :: OS Independent',
          'Programming Language :: Python',
          'Programming Language :: Python :: 3',
          'Topic :: Scientific/Engineering :: Mathematics'
          ],
      )
